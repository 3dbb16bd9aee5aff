"""
Email service for order confirmations and status notifications.
Uses Flask-Mail for SMTP. Sending is best effort: failures are logged and
never undo the order operation that triggered them.
"""
import logging
import threading
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _dispatch(send_fn, *args) -> None:
    """Run send_fn now, or on a worker thread when ORDER_EMAIL_ASYNC is set."""
    app = current_app._get_current_object()
    if not app.config.get('ORDER_EMAIL_ASYNC', False):
        send_fn(*args)
        return

    def _run():
        with app.app_context():
            send_fn(*args)

    threading.Thread(target=_run, name='order-email', daemon=True).start()


def _line_rows(order: dict) -> str:
    return "".join(
        f"""
        <tr>
            <td>{line['productId']} ({line['variantName']})</td>
            <td align="center">{line['quantity']}</td>
            <td align="right">${line['lineTotal']:.2f}</td>
        </tr>
        """
        for line in order.get('lines', [])
    )


def send_order_confirmation_email(to_email: str, order: dict) -> bool:
    """
    Send the order confirmation.

    Args:
        to_email: Customer email
        order: serialized order (checkout_service.serialize_order)

    Returns:
        True if sent (or mail disabled), False on failure
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Order confirmation skipped for {to_email}")
            return True

        store = current_app.config.get('STORE_NAME', 'Storefront')
        totals = order['totals']

        points_line = ""
        if order.get('pointsEarned'):
            points_line = f"<p>You earned <strong>{order['pointsEarned']}</strong> loyalty points.</p>"

        html_body = f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="UTF-8"></head>
        <body style="font-family: Arial, sans-serif; color: #333;">
            <h2>Thank you for your order</h2>
            <p>Order <strong>{order['orderNumber']}</strong></p>
            <table border="1" cellpadding="8" cellspacing="0" width="100%">
                <tr><th>Item</th><th>Qty</th><th>Total</th></tr>
                {_line_rows(order)}
            </table>
            <p>Subtotal: ${totals['subtotal']:.2f}<br>
               Discount: -${totals['discountApplied']:.2f}<br>
               Points: -${totals['pointsDiscount']:.2f}<br>
               Taxes: ${totals['taxes']:.2f}<br>
               Shipping: ${totals['shippingFee']:.2f}<br>
               <strong>Total: ${totals['total']:.2f}</strong></p>
            {points_line}
        </body>
        </html>
        """

        text_body = (
            f"Thank you for your order {order['orderNumber']}.\n"
            f"Total: ${totals['total']:.2f}\n"
        )

        msg = Message(
            subject=f"{store} - Order {order['orderNumber']} confirmed",
            recipients=[to_email],
            body=text_body,
            html=html_body,
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Order confirmation sent to {to_email} ({order['orderNumber']})")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Error sending order confirmation: {e}")
        return False


def send_order_status_email(to_email: str, order_number: str, status: str) -> bool:
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Status email skipped for {to_email}")
            return True

        store = current_app.config.get('STORE_NAME', 'Storefront')
        msg = Message(
            subject=f"{store} - Order {order_number} is now {status}",
            recipients=[to_email],
            body=f"Your order {order_number} is now {status}.",
        )
        mail.send(msg)
        return True

    except Exception:
        logger.exception("Error sending order status email")
        return False


def notify_order_placed(to_email: str, order: dict) -> None:
    _dispatch(send_order_confirmation_email, to_email, order)


def notify_order_status(to_email: str, order_number: str, status: str) -> None:
    _dispatch(send_order_status_email, to_email, order_number, status)
