def sanitize_csv_field(value) -> str:
    """
    Sanitize a CSV field value to prevent CSV injection attacks.

    Spreadsheet applications interpret cells starting with =, +, -, @ as
    formulas. Only apply this to free-text fields; numeric columns such as
    negative coordinates must be written as-is.

    Example:
        >>> sanitize_csv_field("=SUM(A1:A10)")
        "'=SUM(A1:A10)"
        >>> sanitize_csv_field("Mumbai")
        'Mumbai'
    """
    value_str = str(value) if value is not None else ""

    if value_str and value_str[0] in ["=", "+", "-", "@", "\t", "\r", "\n"]:
        value_str = "'" + value_str

    return value_str
