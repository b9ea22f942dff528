"""
utils/constants.py

Purpose: Centralized static content

- All associate-facing SMS texts
- Reply keywords recognized by the inbound router
- Message kinds for the outbound log

(Prevents hardcoding across the codebase)
"""

# ============================================================
# REMINDERS
# ============================================================

NIGHT_BEFORE_REMINDER_MESSAGE = """Hi {first_name}!

Reminder: You have {shift} tomorrow.

Please confirm you'll be there.

Reply C to confirm or call us.

Reply HELP for help, STOP to opt out."""

DAY_OF_REMINDER_MESSAGE = """Good morning {first_name}!

Don't forget your {shift} today.

Please confirm that you will be able to make it, if not please inform us ASAP!

Reply C to confirm or call us.

Reply HELP for help, STOP to opt out."""

# "{title} for {customer} on {date} at {time}"
SHIFT_DESCRIPTION = "{title} for {customer} on {date} at {time}"
SHIFT_DESCRIPTION_NO_CUSTOMER = "{title} on {date} at {time}"

# ============================================================
# CONFIRMATION REPLIES
# ============================================================

CONFIRMATION_ACK_MESSAGE = """Thanks {first_name}!

Your {shift} is confirmed.

We'll see you there!"""

ALREADY_CONFIRMED_MESSAGE = """Thanks {first_name}!

You're already confirmed for {shift}.

We'll see you there!"""

DECLINE_ACK_MESSAGE = """Thanks for letting us know, {first_name}.

We've noted that you can't make {shift}. We'll be in touch about other shifts."""

CONFIRMED_CANNOT_DECLINE_MESSAGE = """Hi {first_name}, you're confirmed for {shift}.

If you can no longer make it, please call us at {company_phone} right away."""

ALREADY_DECLINED_MESSAGE = """Hi {first_name}, we already have you down as unable to make {shift}.

If that changed, please call us at {company_phone}."""

NO_ACTIVE_PLACEMENT_MESSAGE = """Hi {first_name}!

We don't have any upcoming assignments for you to confirm right now.

If you think this is an error, please call us."""

AMBIGUOUS_PLACEMENT_MESSAGE = """Hi {first_name}!

You have more than one shift coming up on the same day, so we couldn't tell which one you meant.

Please call us at {company_phone} to confirm."""

# ============================================================
# KEYWORDS & SUBSCRIPTION
# ============================================================

HELP_MESSAGE = """Hi {first_name}!

Here's how to use our text system:

• Reply "C" or "Confirm" to confirm your assignment
• Reply "HELP" for this message
• Reply "STOP" to stop receiving texts

Questions? Call us at {company_phone}"""

OPT_OUT_MESSAGE = (
    "{first_name}, you have been unsubscribed from our text reminders. "
    "You can still receive calls about your assignments. Reply START to re-subscribe."
)

OPT_IN_MESSAGE = "{first_name}, you've been re-subscribed to text reminders. Reply STOP to opt out anytime."

UNKNOWN_MESSAGE = """Hi {first_name}!

I didn't understand that message.

Reply "C" to confirm, "HELP" for help, or call us directly."""

# ============================================================
# REPLY KEYWORDS
# ============================================================

CONFIRM_KEYWORDS = frozenset({
    "c", "confirm", "confirmed", "yes", "y", "ok", "okay", "sure",
    "will be there", "i'll be there", "ill be there",
})

DECLINE_KEYWORDS = frozenset({
    "d", "decline", "declined", "no", "n",
    "can't make it", "cant make it", "cannot make it",
})

HELP_KEYWORDS = frozenset({"help", "info"})

# Carrier-standard opt-out / opt-in keywords
OPT_OUT_KEYWORDS = frozenset({"stop", "stopall", "unsubscribe", "cancel", "end", "quit"})
OPT_IN_KEYWORDS = frozenset({"start", "unstop", "subscribe"})

# ============================================================
# OUTBOUND MESSAGE KINDS
# ============================================================

MESSAGE_KIND_REMINDER = "reminder"
MESSAGE_KIND_ACK = "acknowledgment"
