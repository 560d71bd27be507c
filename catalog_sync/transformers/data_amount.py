from typing import Optional

UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_data_amount(mb: Optional[float], is_unlimited: bool = False) -> str:
    """
    Human-readable data allowance.

    Binary steps (1024) with one decimal, trailing ".0" dropped:
        format_data_amount(1) -> "1MB"
        format_data_amount(1536) -> "1.5GB"
        format_data_amount(None) -> "Unknown"
        format_data_amount(-1) -> "Unlimited"
    """
    if is_unlimited or mb == -1:
        return "Unlimited"

    if mb is None or mb <= 0:
        return "Unknown"

    value = float(mb) * 1024 * 1024
    unit_index = 0
    while value >= 1024 and unit_index < len(UNITS) - 1:
        value /= 1024
        unit_index += 1

    return f"{round(value, 1):g}{UNITS[unit_index]}"
