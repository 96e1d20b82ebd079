"""Outgoing message texts for the intake conversation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from app.services.sessions import TicketDetails

HINT_ANYTIME = "💡 You can type 'stop' anytime to cancel or 'restart' to begin again."
HINT_SHORT = "💡 Type 'stop' to cancel or 'restart' to begin again."
SUMMARY_ISSUE_LIMIT = 100


def _ticket_lines(tickets: Iterable[Mapping[str, Any]]) -> str:
    return "\n".join(
        f"{index}) Ticket ID: {ticket['ticket_id']} – Status: {ticket['status']}"
        for index, ticket in enumerate(tickets, start=1)
    )


def truncate_issue(text: str, limit: int = SUMMARY_ISSUE_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


@dataclass(frozen=True, slots=True)
class Replies:
    support_name: str
    support_phone: str
    support_email: str

    def instructions(self) -> str:
        return (
            f"👋 Hello! Please type 'Hi' or 'Hello' to start using {self.support_name}.\n\n"
            f"📞 For urgent assistance: {self.support_phone}"
        )

    def intro_caption(self) -> str:
        return (
            f"🎯 Welcome to {self.support_name}!\n\n"
            "Would you like to open a new support ticket?\n\n"
            "Reply 'Yes' to proceed or 'No' to cancel."
        )

    def existing_tickets_menu(self, tickets: list[Mapping[str, Any]]) -> str:
        return (
            f"🎯 Welcome to {self.support_name}!\n\n"
            f"You have {len(tickets)} active ticket(s):\n{_ticket_lines(tickets)}\n\n"
            "Please choose an option:\n"
            "1️⃣ Open a new ticket\n"
            "2️⃣ Close an existing ticket\n"
            "3️⃣ View status of existing tickets\n\n"
            f"📞 For urgent help: {self.support_phone}"
        )

    def ticket_started(self, ticket_id: str, *, from_menu: bool = False) -> str:
        heading = "🎫 New Ticket Created" if from_menu else "🎫 Your Ticket ID"
        return (
            f"{heading}: {ticket_id}\n\n"
            "Step 1 of 3: Please enter your School Code:\n\n"
            f"{HINT_ANYTIME}"
        )

    def restarted(self, ticket_id: str) -> str:
        return (
            "🔄 Process restarted!\n\n"
            f"🎫 Your New Ticket ID: {ticket_id}\n\n"
            "Step 1 of 3: Please enter your School Code:\n\n"
            f"{HINT_ANYTIME}"
        )

    def declined(self) -> str:
        return (
            "👍 No problem! You can start again anytime by typing 'Hi'.\n\n"
            f"📞 For urgent assistance: {self.support_phone}"
        )

    def confirm_reprompt(self) -> str:
        return "Please reply 'Yes' to proceed with creating a ticket or 'No' to cancel."

    def school_code_empty(self) -> str:
        return (
            "⚠️ School Code cannot be empty. Please enter a valid School Code:\n\n"
            f"{HINT_SHORT}"
        )

    def ask_student_pin(self) -> str:
        return f"Step 2 of 3: Please enter Student PIN(s):\n\n{HINT_SHORT}"

    def student_pin_empty(self) -> str:
        return (
            "⚠️ Student PIN cannot be empty. Please enter a valid Student PIN:\n\n"
            f"{HINT_SHORT}"
        )

    def ask_details(self) -> str:
        return (
            "Step 3 of 3: Please provide:\n\n"
            "📝 Detailed description of the issue\n"
            "📷 Screenshot or video (optional but recommended)\n\n"
            "You can either share the image/video with the description in the caption, "
            "or send the media first and follow up with the description separately"
            " - whichever is easier for you.\n\n"
            f"{HINT_SHORT}"
        )

    def media_received(self) -> str:
        return "📷 Media received successfully!"

    def media_failed(self) -> str:
        return "⚠️ Error processing media. Continuing with text description only."

    def details_too_short(self, minimum: int) -> str:
        return (
            "⚠️ Please provide a more detailed description of the issue "
            f"(minimum {minimum} characters). "
            "This helps our support team understand and resolve your problem faster.\n\n"
            f"{HINT_SHORT}"
        )

    def ticket_created(self, ticket_id: str, details: TicketDetails) -> str:
        media = "Attached" if details.screenshot_url else "Not provided"
        return (
            f"✅ Ticket {ticket_id} created successfully!\n\n"
            "📋 Summary:\n"
            f"🏫 School Code: {details.school_code}\n"
            f"👤 Student PIN: {details.student_id}\n"
            f"📝 Issue: {truncate_issue(details.issue_description)}\n"
            f"📷 Media: {media}\n\n"
            "🔄 Our support team will review your request and update you shortly.\n"
            f"For urgent assistance please write us at: {self.support_email}"
        )

    def ticket_failed(self, ticket_id: str | None) -> str:
        return (
            "❌ Failed to create ticket. Please try again later or contact support "
            f"directly at {self.support_phone}.\n\n"
            f"Your ticket details have been saved locally: {ticket_id}"
        )

    def close_selection_menu(self, tickets: list[Mapping[str, Any]]) -> str:
        return (
            f"🔒 Select the ticket number you want to close:\n\n{_ticket_lines(tickets)}\n\n"
            "Please reply with the number (1, 2, 3, etc.)\n\n"
            "💡 Type 'stop' to cancel this action."
        )

    def status_report(self, tickets: list[Mapping[str, Any]]) -> str:
        lines = ["📊 Support Ticket Status:\n"]
        for index, ticket in enumerate(tickets, start=1):
            lines.append(
                f"{index}. Ticket ID: {ticket['ticket_id']}\n"
                f"   Status: {ticket['status']}\n"
                f"   Created: {ticket.get('reporting_date') or 'N/A'}\n"
            )
        lines.append(f"📞 For urgent assistance: {self.support_phone}")
        return "\n".join(lines)

    def existing_choice_reprompt(self) -> str:
        return "❌ Invalid choice. Please reply with '1', '2', or '3'."

    def close_selection_reprompt(self) -> str:
        return "❌ Invalid number. Please select a valid ticket number from the list above."

    def ticket_closed_by_user(self, ticket_id: str) -> str:
        return (
            f"✅ Ticket {ticket_id} has been closed successfully.\n\n"
            f"Thank you for using {self.support_name}!\n"
            f"📞 For urgent help: {self.support_phone}"
        )

    def stop_menu(self) -> str:
        return (
            "🛑 Current process stopped.\n\n"
            "What would you like to do?\n"
            "1️⃣ Restart - Begin a new ticket\n"
            "2️⃣ Exit - End conversation\n\n"
            "Reply with '1' to restart or '2' to exit."
        )

    def stop_choice_reprompt(self) -> str:
        return (
            "❌ Invalid choice. Please reply:\n"
            "1️⃣ Restart - Begin a new ticket\n"
            "2️⃣ Exit - End conversation"
        )

    def farewell(self) -> str:
        return (
            f"👋 Thank you for using {self.support_name}!\n\n"
            "You can start again anytime by typing 'Hi'.\n"
            f"📞 For urgent assistance: {self.support_phone}"
        )

    def resolution_notice(
        self,
        ticket_id: str,
        details: Mapping[str, Any] | None,
        resolution: str,
    ) -> str:
        details = details or {}
        details_text = (
            f"Ticket ID: {ticket_id}\n"
            f"School Name: {details.get('school_name') or 'N/A'}\n"
            f"School Code: {details.get('school_code') or 'N/A'}\n"
            f"Student PIN: {details.get('student_pin') or 'N/A'}\n"
            f"Issue: {details.get('issue_description') or 'N/A'}\n"
        )
        return (
            "Dear User,\n\n"
            "Your ticket has been marked as resolved by the support team. "
            "Below are the details of your ticket:\n\n"
            f"{details_text}"
            f"Resolution message from support:\n{resolution}\n\n"
            "Please reply with *1* if your issue is resolved or *2* to Reopen for further support."
        )

    def resolution_closed(self) -> str:
        return "Thank you for confirming. Your ticket has been closed successfully."

    def ask_reopen_reason(self) -> str:
        return (
            "Your ticket has been reopened. Please describe the specific issue "
            "or concern that remains unresolved:\n\n"
            "💡 You can type 'stop' to cancel or 'restart' for a new ticket."
        )

    def confirmation_reprompt(self) -> str:
        return (
            "Invalid input. Please reply:\n"
            "*1* - Issue is resolved (close ticket)\n"
            "*2* - Issue not resolved (reopen ticket)"
        )

    def reopen_reason_empty(self) -> str:
        return "Please describe the issue that remains unresolved so our team can follow up."

    def reopen_recorded(self) -> str:
        return (
            "Your concern has been recorded and the ticket has been reopened. "
            "Our support team will review your feedback and get back to you shortly.\n\n"
            f"For urgent assistance, please call {self.support_phone}."
        )

    def record_update_failed(self, ticket_id: str) -> str:
        return (
            f"⚠️ We could not update ticket {ticket_id} in our records right now. "
            f"Please contact support at {self.support_phone} so we can complete it for you."
        )
