def hex_to_int(value: str) -> int:
    """Convert hexadecimal string to integer"""
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    return int(value)
