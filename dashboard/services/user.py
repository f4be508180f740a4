"""Resolve the acting user for audit fields."""

from flask import request

USER_HEADER = "X-User"


def get_user_from_request(default=None):
    """Get the acting user's display name.

    Checked in order: the X-User header, a ``user`` field in the JSON body,
    a ``user`` form field, then ``default``.
    """
    user = request.headers.get(USER_HEADER)
    if user:
        return user

    data = request.get_json(silent=True)
    if isinstance(data, dict) and data.get("user"):
        return data["user"]

    if request.form.get("user"):
        return request.form["user"]

    return default
