"""
Flask extensions initialization.

Extensions are initialized here and then imported in the application factory.
This prevents circular imports and allows for proper configuration.
"""

from flask_sqlalchemy import SQLAlchemy

# Initialized with the Flask app in the application factory
db = SQLAlchemy()
