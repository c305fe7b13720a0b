def mask_email(email: str) -> str:
    """te******@example.com style masking for display and logs."""
    if "@" not in email:
        return "***"
    local, domain = email.split("@", 1)
    if len(local) > 2:
        return f"{local[:2]}{'*' * (len(local) - 2)}@{domain}"
    return f"{local[:1]}*@{domain}"
