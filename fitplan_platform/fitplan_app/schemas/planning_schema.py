"""Schemas for the planning API."""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, fields, validate


class PlanInitSchema(Schema):
    """Onboarding answers; section contents are normalized by the context builder."""

    class Meta:
        unknown = EXCLUDE

    biometrics = fields.Dict(required=True)
    objective = fields.Dict(required=True)
    activity = fields.Dict(load_default=dict)
    training = fields.Dict(load_default=dict)
    nutrition = fields.Dict(load_default=dict)
    start_preferences = fields.Dict(load_default=dict)
    locale = fields.String(load_default="es", validate=validate.Length(min=2, max=8))


class WeekRequestSchema(Schema):
    week_number = fields.Integer(required=True, validate=validate.Range(min=1, max=104))


class CacheStatsQuerySchema(Schema):
    days = fields.Integer(load_default=7, validate=validate.Range(min=1, max=365))
