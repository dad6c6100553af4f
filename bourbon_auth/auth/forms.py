"""
WTForms form definitions with input validation.

Flask-WTF reads either form-encoded or JSON request bodies, so the same
forms serve browser posts and API clients.

Input constraints:
- Email: Required, valid format, max 254 chars (RFC 5321)
- Password: Required, max 128 chars (bounds bcrypt input)
"""

from flask_wtf import FlaskForm
from wtforms import BooleanField, EmailField, PasswordField, StringField
from wtforms.validators import DataRequired, Email, Length, Optional


class LoginForm(FlaskForm):
    """Login form with email and password validation."""

    email = EmailField(
        'Email address',
        validators=[
            DataRequired(message='Email address is required.'),
            Email(message='Please enter a valid email address.'),
            Length(max=254, message='Email address is too long.'),
        ],
    )

    password = PasswordField(
        'Password',
        validators=[
            DataRequired(message='Password is required.'),
            Length(max=128, message='Password is too long.'),
        ],
    )


class LockoutQueryForm(FlaskForm):
    """Identifier for lockout status checks and attempt recording."""

    class Meta:
        csrf = False

    email = StringField(
        'Email address',
        validators=[
            DataRequired(message='Email is required'),
            Length(max=254, message='Email address is too long.'),
        ],
    )
    success = BooleanField('Success', validators=[Optional()])


class SyncUserForm(FlaskForm):
    """Provider user record pushed by the session client after sign-in."""

    class Meta:
        csrf = False

    user_id = StringField('Provider user id', validators=[DataRequired(), Length(max=128)])
    email = EmailField('Email address', validators=[DataRequired(), Email(), Length(max=254)])
    display_name = StringField('Display name', validators=[Optional(), Length(max=128)])
