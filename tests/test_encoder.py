import base64

import hypothesis.strategies as st
from hypothesis import given, settings

from gentask.core.task_types import BinaryPart
from gentask.llm.client import decode_part
from gentask.multimodal import encoder
from gentask.multimodal.encoder import EncodingError, encode, to_data_uri


def test_encode_png_detected_by_image_header(png_bytes):
    part = encode(png_bytes)
    assert isinstance(part, BinaryPart)
    assert part.mime_type == "image/png"
    assert part.kind == "binary"
    assert base64.b64decode(part.data) == png_bytes


def test_encode_jpeg_ignores_misleading_name(jpeg_bytes):
    part = encode(jpeg_bytes, "receipt.png")
    assert part.mime_type == "image/jpeg"
    assert part.name == "receipt.png"


def test_encode_pdf_signature():
    part = encode(b"%PDF-1.7\n%binary body")
    assert part.mime_type == "application/pdf"


def test_encode_wav_signature():
    raw = b"RIFF" + (36).to_bytes(4, "little") + b"WAVEfmt " + b"\x00" * 24
    assert encode(raw).mime_type == "audio/wav"


def test_encode_falls_back_to_declared_name():
    part = encode(b"vendor,total\nBuildIt,120\n", "expenses.csv")
    assert part.mime_type == "text/csv"


def test_encode_empty_payload():
    assert encode(b"") == EncodingError(encoder.EMPTY_PAYLOAD, "Payload is empty")


def test_encode_undetected_type():
    result = encode(b"just some bytes")
    assert isinstance(result, EncodingError)
    assert result.code == encoder.UNDETECTED_TYPE


def test_encode_undetected_type_with_unknown_extension():
    result = encode(b"just some bytes", "notes.xyz")
    assert result.code == encoder.UNDETECTED_TYPE


def test_data_uri_uses_header_media_type(png_bytes):
    uri = b"data:image/png;base64," + base64.b64encode(png_bytes)
    part = encode(uri)
    assert part.mime_type == "image/png"
    assert decode_part(part) == png_bytes


def test_data_uri_alias_is_normalized():
    uri = b"data:image/jpg;base64," + base64.b64encode(b"\xff\xd8\xffpayload")
    assert encode(uri).mime_type == "image/jpeg"


def test_data_uri_accepts_str_input():
    part = encode("data:text/plain,hello%20world")
    assert part.mime_type == "text/plain"
    assert decode_part(part) == b"hello world"


def test_data_uri_without_media_type():
    result = encode(b"data:;base64,aGVsbG8=")
    assert result.code == encoder.UNDETECTED_TYPE


def test_data_uri_without_separator():
    assert encode(b"data:image/png;base64").code == encoder.MALFORMED_ENVELOPE


def test_data_uri_with_invalid_base64():
    assert encode(b"data:image/png;base64,@@@").code == encoder.MALFORMED_ENVELOPE


def test_data_uri_with_empty_payload():
    assert encode(b"data:image/png;base64,").code == encoder.EMPTY_PAYLOAD


def test_unsupported_media_type():
    result = encode(b"data:application/zip;base64,UEsDBA==")
    assert result.code == encoder.UNSUPPORTED_TYPE


def test_payload_too_large(monkeypatch):
    monkeypatch.setattr(encoder, "MAX_PAYLOAD_BYTES", 16)
    result = encode(b"%PDF-" + b"x" * 32)
    assert result.code == encoder.PAYLOAD_TOO_LARGE


def test_encode_is_deterministic(png_bytes):
    assert encode(png_bytes, "a.png") == encode(png_bytes, "a.png")


def test_to_data_uri_round_trip(png_bytes):
    part = encode(png_bytes)
    again = encode(to_data_uri(part))
    assert again == part


@settings(max_examples=100)
@given(
    payload=st.binary(min_size=1, max_size=2048),
    mime_type=st.sampled_from(sorted(encoder.RECOGNIZED_MEDIA_TYPES)),
)
def test_encode_then_decode_returns_original_bytes(payload, mime_type):
    uri = f"data:{mime_type};base64,".encode("ascii") + base64.b64encode(payload)
    part = encode(uri)
    assert isinstance(part, BinaryPart)
    assert part.mime_type == mime_type
    assert decode_part(part) == payload


@settings(max_examples=100)
@given(payload=st.binary(min_size=1, max_size=512))
def test_raw_pdf_payloads_round_trip(payload):
    raw = b"%PDF-" + payload
    part = encode(raw)
    assert decode_part(part) == raw


def test_encode_accepts_buffer_types(png_bytes):
    assert encode(memoryview(b"%PDF-1.7\nbody")).mime_type == "application/pdf"
    assert encode(bytearray(png_bytes)) == encode(png_bytes)
    uri = memoryview(b"data:text/plain,hello")
    assert decode_part(encode(uri)) == b"hello"


def test_encode_empty_buffer():
    assert encode(memoryview(b"")).code == encoder.EMPTY_PAYLOAD
