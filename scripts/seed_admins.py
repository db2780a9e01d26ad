#!/usr/bin/env python3
"""
Seed the operator accounts for a fresh deployment.

Creates the super-admin from SUPER_ADMIN_EMAIL / SUPER_ADMIN_PASSWORD. When
SEED_WORKSPACE_NAME, SEED_ADMIN_EMAIL and SEED_ADMIN_PASSWORD are also set, a
workspace and its first workspace_admin user are created too.
Run from project root: python scripts/seed_admins.py
"""

import os
import sys

project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from dotenv import load_dotenv
load_dotenv(os.path.join(project_root, ".env"))

import bcrypt
from src.db import supabase


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def seed_super_admin(email: str, password: str) -> None:
    existing = supabase.table("super_admins").select("id").eq("email", email.lower()).execute()
    if existing.data:
        print(f"Super-admin '{email}' already exists.")
        return

    result = supabase.table("super_admins").insert({
        "email": email.lower(),
        "password_hash": hash_password(password),
        "name": "Super Admin",
    }).execute()
    print(f"Created super-admin {result.data[0]['id']} ({email})")


def seed_workspace_admin(workspace_name: str, email: str, password: str) -> None:
    workspace = supabase.table("workspaces").select("id").eq("name", workspace_name).is_(
        "deleted_at", "null"
    ).execute()
    if workspace.data:
        workspace_id = workspace.data[0]["id"]
        print(f"Workspace '{workspace_name}' already exists: {workspace_id}")
    else:
        workspace_id = supabase.table("workspaces").insert({"name": workspace_name}).execute().data[0]["id"]
        print(f"Created workspace {workspace_id} ({workspace_name})")

    user = supabase.table("users").select("id").eq("workspace_id", workspace_id).eq(
        "email", email.lower()
    ).execute()
    if user.data:
        print(f"User '{email}' already exists in workspace.")
        return

    created = supabase.table("users").insert({
        "workspace_id": workspace_id,
        "email": email.lower(),
        "password_hash": hash_password(password),
        "role": "workspace_admin",
    }).execute()
    print(f"Created workspace admin {created.data[0]['id']} ({email})")


def main():
    email = os.getenv("SUPER_ADMIN_EMAIL")
    password = os.getenv("SUPER_ADMIN_PASSWORD")
    if not email or not password:
        print("Error: SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD must be set in .env")
        sys.exit(1)
    seed_super_admin(email, password)

    workspace_name = os.getenv("SEED_WORKSPACE_NAME")
    admin_email = os.getenv("SEED_ADMIN_EMAIL")
    admin_password = os.getenv("SEED_ADMIN_PASSWORD")
    if workspace_name and admin_email and admin_password:
        seed_workspace_admin(workspace_name, admin_email, admin_password)


if __name__ == "__main__":
    main()
