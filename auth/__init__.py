"""auth/ -- Credential and session engine for Keyward.

Layer rule: auth/ imports only stdlib + third-party libraries. core/config.py
is referenced for type checking only. It does NOT import from api/ or mail/;
the mailer arrives through the Mailer protocol in auth/codes.py.
api/ imports from auth/, not the other way around.
"""
