from typing import Optional

from .crypto import decrypt, encrypt

# Values under these keys are stored encrypted.
ENCRYPTED_KEYS = {"API_KEY", "INTERNAL_API_KEY", "RBAC_CONFIG"}

API_SETTING_KEYS = ("API_ENDPOINT", "API_KEY", "SENDER_NAME", "SENDER_PHONE", "SENDER_ADDRESS")


def get_setting(cur, key: str) -> Optional[str]:
    cur.execute("SELECT value FROM system_settings WHERE key = %s", (key,))
    row = cur.fetchone()
    if not row:
        return None
    value = row.get("value")
    if key in ENCRYPTED_KEYS:
        return decrypt(value)
    return value


def get_settings(cur, keys) -> dict:
    keys = list(keys)
    cur.execute("SELECT key, value FROM system_settings WHERE key = ANY(%s)", (keys,))
    found = {r["key"]: r["value"] for r in cur.fetchall()}
    out = {}
    for k in keys:
        v = found.get(k)
        out[k] = decrypt(v) if (k in ENCRYPTED_KEYS and v) else v
    return out


def set_setting(cur, key: str, value: Optional[str]) -> None:
    stored = (encrypt(value) or "") if key in ENCRYPTED_KEYS else (value or "")
    cur.execute(
        """
        INSERT INTO system_settings (key, value, updated_at)
        VALUES (%s, %s, now())
        ON CONFLICT (key) DO UPDATE
        SET value = EXCLUDED.value, updated_at = now()
        """,
        (key, stored),
    )


def get_api_settings(cur) -> dict:
    vals = get_settings(cur, API_SETTING_KEYS)
    return {
        "api_endpoint": vals.get("API_ENDPOINT") or None,
        "api_key": vals.get("API_KEY") or None,
        "sender_name": vals.get("SENDER_NAME") or None,
        "sender_phone": vals.get("SENDER_PHONE") or None,
        "sender_address": vals.get("SENDER_ADDRESS") or None,
    }
