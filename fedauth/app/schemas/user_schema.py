"""
schemas/user_schema.py — Public view of a User.

The refresh-token set is deliberately absent: it never leaves the server.
"""

from __future__ import annotations

from marshmallow import Schema, fields


class UserSchema(Schema):
    id = fields.Str()
    provider = fields.Str()
    provider_id = fields.Str(data_key="providerId")
    display_name = fields.Str(data_key="displayName")
    email = fields.Str(allow_none=True)
    photo = fields.Str(allow_none=True)
    roles = fields.Method("get_roles")
    created_at = fields.DateTime(data_key="createdAt")
    updated_at = fields.DateTime(data_key="updatedAt")

    def get_roles(self, user) -> list[str]:
        return sorted(user.roles)
