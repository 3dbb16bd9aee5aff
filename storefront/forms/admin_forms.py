"""
Admin forms for discount and order management.

Forms are fed from the JSON request body (Flask-WTF reads JSON payloads);
CSRF is enforced globally by CSRFProtect, so the per-form token is off.
"""
from decimal import Decimal

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, DecimalField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import InputRequired, NumberRange, Length, Optional, Regexp

from storefront.exceptions import InvalidInputError
from storefront.models import OrderStatus

DISCOUNT_TYPE_CHOICES = [('percentage', 'Percentage'), ('fixed', 'Fixed amount')]


class JSONForm(FlaskForm):
    """Base form for JSON endpoints."""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault('meta', {'csrf': False})
        super().__init__(*args, **kwargs)

    @classmethod
    def from_json(cls, payload):
        """
        Build the form from a JSON object. Nulls and nested values are left
        out; numbers go through str() so DecimalField sees the literal.
        """
        formdata = MultiDict()
        for key, value in (payload or {}).items():
            if value is None or isinstance(value, (list, dict)):
                continue
            formdata[key] = value if isinstance(value, bool) else str(value)
        return cls(formdata=formdata)

    def validate_or_raise(self):
        if not self.validate():
            raise InvalidInputError('Validation failed', errors=self.errors)
        return self


class LegacyDiscountForm(JSONForm):
    """Storefront admin shortcut: short code, percentage, small usage limit."""

    code = StringField(
        'Code',
        validators=[InputRequired(message='Discount code is required')]
    )

    discount_percentage = DecimalField(
        'Percentage',
        validators=[
            InputRequired(message='discount_percentage is required'),
            NumberRange(min=Decimal('0.01'), max=100, message='Percentage must be greater than 0 and at most 100')
        ]
    )

    usageLimit = IntegerField('Usage limit', validators=[Optional()])


class DiscountForm(JSONForm):
    """Full discount code definition."""

    code = StringField(
        'Code',
        validators=[
            InputRequired(message='Discount code is required'),
            Length(max=32),
            Regexp(r'^[A-Za-z0-9]+$', message='Code must be alphanumeric')
        ]
    )
    description = TextAreaField('Description', validators=[Optional(), Length(max=255)])
    discount_type = SelectField('Type', choices=DISCOUNT_TYPE_CHOICES, default='percentage')
    discount_value = DecimalField(
        'Value',
        validators=[InputRequired(message='discount_value is required'), NumberRange(min=0)]
    )
    min_purchase_amount = DecimalField('Minimum purchase', validators=[Optional(), NumberRange(min=0)])
    max_discount_amount = DecimalField('Maximum discount', validators=[Optional(), NumberRange(min=0)])
    start_date = StringField('Start date', validators=[Optional()])
    end_date = StringField('End date', validators=[Optional()])
    usage_limit = IntegerField('Usage limit', validators=[Optional(), NumberRange(min=1)])
    is_active = BooleanField('Active', default=True)


class DiscountUpdateForm(DiscountForm):
    """Partial update: every field optional."""

    code = StringField(
        'Code',
        validators=[Optional(), Length(max=32), Regexp(r'^[A-Za-z0-9]+$', message='Code must be alphanumeric')]
    )
    discount_type = SelectField('Type', choices=DISCOUNT_TYPE_CHOICES, validators=[Optional()], validate_choice=False)
    discount_value = DecimalField('Value', validators=[Optional(), NumberRange(min=0)])


class BulkDiscountForm(JSONForm):
    prefix = StringField(
        'Prefix',
        validators=[
            InputRequired(message='Prefix is required'),
            Length(max=20),
            Regexp(r'^[A-Za-z0-9]+$', message='Prefix must be alphanumeric')
        ]
    )
    count = IntegerField(
        'Count',
        validators=[InputRequired(message='count is required'), NumberRange(min=1, max=100)]
    )
    discount_type = SelectField('Type', choices=DISCOUNT_TYPE_CHOICES, default='percentage')
    discount_value = DecimalField('Value', validators=[Optional(), NumberRange(min=0)])
    min_purchase_amount = DecimalField('Minimum purchase', validators=[Optional(), NumberRange(min=0)])
    max_discount_amount = DecimalField('Maximum discount', validators=[Optional(), NumberRange(min=0)])
    start_date = StringField('Start date', validators=[Optional()])
    end_date = StringField('End date', validators=[Optional()])
    usage_limit = IntegerField('Usage limit', validators=[Optional(), NumberRange(min=1)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=255)])


class OrderStatusForm(JSONForm):
    status = SelectField(
        'Status',
        choices=[(s.value, s.value.title()) for s in OrderStatus],
        validators=[InputRequired(message='status is required')],
        filters=[lambda value: value.strip().lower() if isinstance(value, str) else value]
    )
    note = TextAreaField('Note', validators=[Optional(), Length(max=500)])


class LoyaltyCreditForm(JSONForm):
    """Points for a purchase made outside checkout."""

    amount = DecimalField(
        'Amount',
        validators=[
            InputRequired(message='amount is required'),
            NumberRange(min=Decimal('0.01'), message='amount must be positive')
        ]
    )
    orderNumber = StringField('Order number', validators=[Optional(), Length(max=32)])
    reason = StringField('Reason', validators=[Optional(), Length(max=120)])


class LoyaltyRedeemForm(JSONForm):
    points = IntegerField(
        'Points',
        validators=[InputRequired(message='points is required'), NumberRange(min=1, message='points must be positive')]
    )
    rewardId = StringField('Reward', validators=[InputRequired(message='rewardId is required'), Length(max=64)])
    rewardName = StringField('Reward name', validators=[Optional(), Length(max=100)])
