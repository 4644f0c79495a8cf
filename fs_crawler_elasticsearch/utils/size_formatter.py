import re

_SIZE_UNITS = {
    'b': 1,
    'kb': 1024,
    'mb': 1024 ** 2,
    'gb': 1024 ** 3,
    'tb': 1024 ** 4,
}

_SIZE_PATTERN = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$')


def format_size(size_bytes: int) -> str:
    """Format size in bytes to human readable format.
    
    Args:
        size_bytes: Size in bytes
        
    Returns:
        Human readable size string (e.g., "1.5 GB")
    """
    if not size_bytes:
        return "0 B"
        
    units = ['B', 'KB', 'MB', 'GB', 'TB', 'PB']
    size = float(size_bytes)
    unit_index = 0
    
    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1
    
    if size.is_integer():
        return f"{int(size)} {units[unit_index]}"
    else:
        return f"{size:.1f} {units[unit_index]}"


def parse_size(value) -> int:
    """Parse a human readable size ("10mb", "512kb", 2048) into bytes.

    Args:
        value: Integer byte count or string with an optional unit suffix

    Returns:
        Size in bytes

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)

    match = _SIZE_PATTERN.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    unit = unit.lower() or 'b'
    if unit not in _SIZE_UNITS:
        raise ValueError(f"Unknown size unit '{unit}' in {value!r}")
    return int(float(number) * _SIZE_UNITS[unit])
