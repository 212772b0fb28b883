"""Shared Flask extension instances."""

from __future__ import annotations

from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db: SQLAlchemy = SQLAlchemy()
migrate: Migrate = Migrate(compare_type=True)
jwt: JWTManager = JWTManager()
cors: CORS = CORS()
limiter: Limiter = Limiter(key_func=get_remote_address, headers_enabled=True)
