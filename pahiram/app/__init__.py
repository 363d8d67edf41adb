"""
Pahiram authentication service.

Federates logins to the APCIS identity API, mirrors APCIS users and
courses into the local database and issues Pahiram session tokens.

Packages:
- auth: APCIS client, login flow, session tokens, routes
- users: local user/course repository and new-user defaults
- db: SQLAlchemy engine, session and ORM models
"""

__version__ = "1.0.0"
