"""
Variable-length-code LZW as used by GIF image data.

Codes are packed least-significant-bit first.  The code width starts at
``min_code_size + 1`` bits and grows up to 12; once all 4096 codes are
assigned the encoder emits a clear code and starts a fresh table.
"""

from __future__ import annotations

from composegif.exceptions import DecodeError

MAX_CODE_SIZE = 12
MAX_CODES = 1 << MAX_CODE_SIZE


def min_code_size_for(palette_size: int) -> int:
    """Smallest legal GIF LZW minimum code size for *palette_size* colors."""
    bits = max(palette_size - 1, 1).bit_length()
    return max(bits, 2)


def lzw_encode(indices: bytes, min_code_size: int) -> bytes:
    """Compress palette *indices* into a GIF LZW code stream."""
    clear_code = 1 << min_code_size
    end_code = clear_code + 1
    code_size = min_code_size + 1
    next_code = end_code + 1
    table: dict[int, int] = {}

    out = bytearray()
    buf = 0
    nbits = 0

    def emit(code: int) -> None:
        nonlocal buf, nbits
        buf |= code << nbits
        nbits += code_size
        while nbits >= 8:
            out.append(buf & 0xFF)
            buf >>= 8
            nbits -= 8

    emit(clear_code)
    if not indices:
        emit(end_code)
        if nbits:
            out.append(buf & 0xFF)
        return bytes(out)

    prefix = indices[0]
    for symbol in indices[1:]:
        key = (prefix << 8) | symbol
        code = table.get(key)
        if code is not None:
            prefix = code
            continue
        emit(prefix)
        if next_code < MAX_CODES:
            table[key] = next_code
            if next_code == (1 << code_size) and code_size < MAX_CODE_SIZE:
                code_size += 1
            next_code += 1
        else:
            emit(clear_code)
            table.clear()
            code_size = min_code_size + 1
            next_code = end_code + 1
        prefix = symbol

    emit(prefix)
    # The decoder adds one more entry after reading the final code.
    if next_code == (1 << code_size) and code_size < MAX_CODE_SIZE:
        code_size += 1
    emit(end_code)
    if nbits:
        out.append(buf & 0xFF)
    return bytes(out)


def lzw_decode(data: bytes, min_code_size: int) -> bytes:
    """Decompress a GIF LZW code stream into palette indices.

    Decoding stops at the end-of-information code or when the data runs
    out; callers check the output length against the frame size.
    """
    if not 1 <= min_code_size <= 11:
        raise DecodeError(f"Invalid LZW minimum code size: {min_code_size}")
    clear_code = 1 << min_code_size
    end_code = clear_code + 1

    def fresh_table() -> list[bytes]:
        return [bytes((i,)) for i in range(clear_code)] + [b"", b""]

    table = fresh_table()
    code_size = min_code_size + 1
    prev: bytes | None = None

    out = bytearray()
    buf = 0
    nbits = 0
    pos = 0
    size = len(data)

    while True:
        while nbits < code_size:
            if pos >= size:
                return bytes(out)
            buf |= data[pos] << nbits
            pos += 1
            nbits += 8
        code = buf & ((1 << code_size) - 1)
        buf >>= code_size
        nbits -= code_size

        if code == clear_code:
            table = fresh_table()
            code_size = min_code_size + 1
            prev = None
            continue
        if code == end_code:
            break

        if prev is None:
            if code >= clear_code:
                raise DecodeError(f"Invalid LZW code {code} after clear.")
            entry = table[code]
        else:
            if code < len(table):
                entry = table[code]
            elif code == len(table):
                entry = prev + prev[:1]
            else:
                raise DecodeError(f"Invalid LZW code {code} (table size {len(table)}).")
            if len(table) < MAX_CODES:
                table.append(prev + entry[:1])
                if len(table) == (1 << code_size) and code_size < MAX_CODE_SIZE:
                    code_size += 1
        out += entry
        prev = entry

    return bytes(out)
