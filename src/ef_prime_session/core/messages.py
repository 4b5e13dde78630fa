"""
Text sent to users: pairing code formatting and the two delivery messages.
"""

from datetime import datetime
from typing import Optional


def format_pairing_code(raw_code: str, group_size: int = 4, separator: str = "-") -> str:
    """Split a raw pairing code into fixed-size groups, e.g. ABCD1234 -> ABCD-1234."""
    code = raw_code.strip()
    if not code:
        return code
    return separator.join(code[i:i + group_size] for i in range(0, len(code), group_size))


def make_session_identifier(product_tag: str, paste_id: str) -> str:
    return f"{product_tag}_{paste_id}"


def render_instructions(
    product_tag: str,
    session_identifier: str,
    generated_at: Optional[datetime] = None,
) -> str:
    """Human-readable message that follows the bare session id."""
    generated_at = generated_at or datetime.now()
    timestamp = generated_at.strftime("%Y-%m-%d %H:%M:%S")

    return f"""🤖 *{product_tag} Session Generated* 🤖

✅ *Your Session ID:*
`{session_identifier}`

📱 *Instructions:*
1. Copy the session ID from the previous message
2. Use it in your bot deployment
3. Keep this ID secure and private

⚠️ *Important:*
- Do not share this session ID with anyone
- This message will be the only time you receive it
- Save it in a secure location

🔐 *Generated on:* {timestamp}

Thank you for using {product_tag}! 🚀"""
