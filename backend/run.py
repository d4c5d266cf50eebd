"""
Flask Application Entry Point

Creates the app instance using the application factory pattern. The app
serves no HTTP routes; it carries configuration and the tenant database
manager for the shell and the admin CLI.

Usage:
    Shell: flask --app run shell
    Tenant administration: cashtrail-tenants --help
"""

import os

from cashtrail import create_app

config_name = os.environ.get("FLASK_ENV", "development")
app = create_app(config_name)
