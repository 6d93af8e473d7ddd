"""Custom validators available as ``v.<Name>()`` in ``@param`` expressions."""

from __future__ import annotations

from app.services.schema_nodes import z


def PasswordSchema():
    return z.string().min(5, "Password must be at least 5 characters long")


def Username():
    return z.string().trim().min(3).max(32).regex(r"^[A-Za-z0-9_.-]+$", "Invalid username")
