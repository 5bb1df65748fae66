from app.models.booking import Booking, BookingStatus


def password_reset_email(reset_link: str, expires_in_minutes: int) -> tuple[str, str]:
    """Лист для скидання пароля."""
    subject = "🔑 Reset your password"

    body = f"""
    <html>
        <body>
            <h2 style="color: #4CAF50;">🔑 Password reset</h2>
            <p>Hello!</p>
            <p>We received a request to reset your password. Follow the link below to choose a new one:</p>
            <p>
                <a href="{reset_link}" style="font-size: 16px; color: #007bff; text-decoration: none;">
                    🔗 Reset password
                </a>
            </p>
            <p>The link is valid for {expires_in_minutes} minutes and can be used only once.</p>
            <p>If you did not request a password reset, simply ignore this email.</p>
            <br>
            <p>Best regards,<br>Your Library</p>
        </body>
    </html>
    """
    return subject, body


def verification_email(verify_link: str) -> tuple[str, str]:
    """Лист після реєстрації з посиланням для підтвердження email."""
    subject = "🎉 Verify your library account"

    body = f"""
    <html>
        <body>
            <h2 style="color: #4CAF50;">📚 Welcome to the library!</h2>
            <p>Please confirm your email address to finish the registration:</p>
            <p>
                <a href="{verify_link}" style="font-size: 16px; color: #007bff; text-decoration: none;">
                    ✅ Verify email
                </a>
            </p>
            <br>
            <p>📚 Best regards,<br><strong>Your Library</strong></p>
        </body>
    </html>
    """
    return subject, body


_STATUS_HEADLINES = {
    BookingStatus.APPROVED: ("✅ Your booking has been approved!", "#4CAF50"),
    BookingStatus.REJECTED: ("⛔ Your booking has been rejected", "#D32F2F"),
    BookingStatus.RETURNED: ("📚 Thank you for returning the book!", "#4CAF50"),
}


def booking_status_email(booking: Booking) -> tuple[str, str]:
    """Лист про зміну статусу бронювання."""
    headline, color = _STATUS_HEADLINES[booking.status]
    book = booking.book

    details = (
        f"<p>📅 <strong>Borrow date:</strong> {booking.borrow_date:%Y-%m-%d}</p>"
        f"<p>⏳ <strong>Return by:</strong> {booking.return_date:%Y-%m-%d}</p>"
    )
    if booking.status == BookingStatus.RETURNED and booking.overdue_fee:
        details += f"<p>💰 <strong>Overdue fee:</strong> {booking.overdue_fee}</p>"

    body = f"""
    <html>
        <body>
            <h2 style="color: {color};">{headline}</h2>
            <hr>
            <h3>📖 {book.title}</h3>
            <p><strong>✍️ Author:</strong> {book.author}</p>
            {details}
            <hr>
            <p>📚 Best regards,<br><strong>Your Library</strong></p>
        </body>
    </html>
    """
    return headline, body
