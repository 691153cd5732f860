import zlib

from tinymcap.io.raw_reader import BytesReader
from tinymcap.mcap.error import McapInvalidCrcError
from tinymcap.mcap.record_parser import (
    DATA_END_SIZE,
    FOOTER_SIZE,
    MAGIC_BYTES_SIZE,
    McapRecordParser
)
from tinymcap.mcap.records import FooterRecord

# Bytes of the footer covered by the summary CRC: opcode, length, summary_start, summary_offset_start
FOOTER_CRC_PREFIX_SIZE = FOOTER_SIZE - 4


def compute_crc(data: bytes | memoryview, start_value: int = 0) -> int:
    return zlib.crc32(data, start_value)


def validate_crc(data: bytes | memoryview, crc: int) -> bool:
    """Validate a CRC32 over the given bytes."""
    return zlib.crc32(data) == crc


def assert_crc(data: bytes | memoryview, crc: int) -> None:
    """Assert a CRC32 over the given bytes."""
    if not validate_crc(data, crc):
        raise McapInvalidCrcError('Invalid CRC for data')


def _read_footer(data: memoryview) -> tuple[int, FooterRecord]:
    footer_offset = len(data) - FOOTER_SIZE - MAGIC_BYTES_SIZE
    reader = BytesReader(data)
    reader.seek_from_start(footer_offset)
    return footer_offset, McapRecordParser.parse_footer(reader)


def validate_data_crc(data: bytes | memoryview, footer: FooterRecord | None = None) -> bool:
    """Check the CRC of the data section stored in the DataEnd record.

    The data section CRC covers every byte from the start of the file up to
    the DataEnd record. A stored value of zero means no CRC was computed.
    """
    view = memoryview(data)
    footer_offset, parsed_footer = _read_footer(view)
    footer = footer or parsed_footer

    if footer.summary_start:
        data_end_offset = footer.summary_start - DATA_END_SIZE
    else:
        data_end_offset = footer_offset - DATA_END_SIZE

    reader = BytesReader(view)
    reader.seek_from_start(data_end_offset)
    data_end = McapRecordParser.parse_data_end(reader)
    if data_end.data_section_crc == 0:
        return True
    return zlib.crc32(view[:data_end_offset]) == data_end.data_section_crc


def assert_data_crc(data: bytes | memoryview, footer: FooterRecord | None = None) -> None:
    """Assert the CRC of the data section."""
    if not validate_data_crc(data, footer):
        raise McapInvalidCrcError('Invalid CRC for data section')


def validate_summary_crc(data: bytes | memoryview, footer: FooterRecord | None = None) -> bool:
    """Check the CRC of the summary section stored in the footer.

    The summary CRC covers the summary section and the footer fields up to
    (but excluding) the CRC itself.
    """
    view = memoryview(data)
    footer_offset, parsed_footer = _read_footer(view)
    footer = footer or parsed_footer

    if footer.summary_crc == 0 or footer.summary_start == 0:
        return True
    covered = view[footer.summary_start:footer_offset + FOOTER_CRC_PREFIX_SIZE]
    return zlib.crc32(covered) == footer.summary_crc


def assert_summary_crc(data: bytes | memoryview, footer: FooterRecord | None = None) -> None:
    """Assert the CRC of the summary section."""
    if not validate_summary_crc(data, footer):
        raise McapInvalidCrcError('Invalid CRC for summary section')


def validate_mcap_crc(data: bytes | memoryview) -> bool:
    """Check both the data and summary CRCs of a finalized MCAP file."""
    return validate_data_crc(data) and validate_summary_crc(data)
