import json

import pytest

from fluora_agent.errors import ExtractionFailure
from fluora_agent.extract import NOT_FOUND, defer_reference, extract, extract_group, require_group
from fluora_agent.models import StageId

LISTING = json.dumps(
    {
        "servers": [
            {"name": "Weather API", "serverId": "srv-0", "mcpServerUrl": "https://weather/mcp"},
            {"name": "PDF Shift", "serverId": "srv-1", "mcpServerUrl": "https://example/mcp"},
        ]
    }
)

# ---------------------------------------------------------------------------
# Strict JSON
# ---------------------------------------------------------------------------


def test_extract_whole_json_document():
    content = '{"serverId": "srv-1", "mcpServerUrl": "https://example/mcp"}'
    assert extract(content, "serverId") == "srv-1"
    assert extract(content, "mcpServerUrl") == "https://example/mcp"


def test_extract_fenced_json():
    content = '```json\n{"itemId": "1", "itemPrice": "0.05"}\n```'
    assert extract(content, "itemId") == "1"
    assert extract(content, "itemPrice") == "0.05"


def test_extract_numeric_values_are_stringified():
    content = '{"items": [{"itemId": 7, "itemPrice": 0.05}]}'
    assert extract(content, "itemId") == "7"
    assert extract(content, "itemPrice") == "0.05"


def test_extract_alias_for_wallet_address():
    content = '{"paymentMethods": [{"paymentMethod": "USDC_BASE_SEPOLIA", "walletAddress": "0xabc"}]}'
    assert extract(content, "serverWalletAddress") == "0xabc"


def test_extract_json_encoded_inside_string_value():
    content = json.dumps({"type": "text", "text": json.dumps({"itemId": "1"})})
    assert extract(content, "itemId") == "1"


def test_extract_ignores_empty_and_boolean_values():
    content = '{"itemId": "", "nested": {"itemId": true}, "items": [{"itemId": "3"}]}'
    assert extract(content, "itemId") == "3"


# ---------------------------------------------------------------------------
# Fragments and heuristics
# ---------------------------------------------------------------------------


def test_extract_fragment_inside_prose():
    content = 'Here is the pricing: {"itemId": "1", "itemPrice": "0.05"}. Let me know!'
    assert extract(content, "itemPrice") == "0.05"


def test_extract_price_from_prose_without_json():
    content = 'The conversion item is listed with "itemPrice": "0.12" in USDC.'
    assert extract(content, "itemPrice") == "0.12"


def test_extract_key_value_prose():
    content = "Found it. serverId: srv-9. mcpServerUrl = https://example/mcp"
    assert extract(content, "serverId") == "srv-9"
    assert extract(content, "mcpServerUrl") == "https://example/mcp"


def test_extract_prose_prefers_region_after_hint():
    content = "Weather server serverId: srv-0\nPDFShift server serverId: srv-1"
    assert extract(content, "serverId", near="PDFShift") == "srv-1"


def test_extract_prose_hint_ignores_spacing_and_case():
    content = "Weather serverId: srv-0\nPDF Shift serverId: srv-1"
    assert extract(content, "serverId", near="PDFShift") == "srv-1"
    assert extract(content, "serverId", near="pdf-shift") == "srv-1"


def test_extract_prose_hint_absent_and_ambiguous_is_not_found():
    content = "Weather serverId: srv-0\nMaps serverId: srv-2"
    assert extract(content, "serverId", near="PDFShift") is NOT_FOUND


def test_extract_prose_hint_absent_single_value_is_accepted():
    content = "Found one converter. serverId: srv-5"
    assert extract(content, "serverId", near="PDFShift") == "srv-5"


def test_extract_not_found_is_falsy_sentinel():
    value = extract("No servers matched your query.", "serverId")
    assert value is NOT_FOUND
    assert not value
    assert repr(value) == "NotFound"


def test_extract_empty_content():
    assert extract("", "itemId") is NOT_FOUND


# ---------------------------------------------------------------------------
# Disambiguation by hint
# ---------------------------------------------------------------------------


def test_extract_near_selects_matching_object():
    assert extract(LISTING, "serverId", near="PDFShift") == "srv-1"
    assert extract(LISTING, "mcpServerUrl", near="PDFShift") == "https://example/mcp"


def test_extract_without_hint_takes_first_object():
    assert extract(LISTING, "serverId") == "srv-0"


def test_extract_near_ambiguous_is_not_found():
    content = json.dumps({"servers": [{"name": "A", "serverId": "a"}, {"name": "B", "serverId": "b"}]})
    assert extract(content, "serverId", near="PDFShift") is NOT_FOUND


def test_extract_near_single_candidate_is_accepted():
    content = json.dumps({"servers": [{"name": "Converter", "serverId": "srv-5"}]})
    assert extract(content, "serverId", near="PDFShift") == "srv-5"


def test_extract_is_idempotent():
    first = (extract(LISTING, "serverId", "PDFShift"), extract(LISTING, "mcpServerUrl", "PDFShift"))
    second = (extract(LISTING, "serverId", "PDFShift"), extract(LISTING, "mcpServerUrl", "PDFShift"))
    assert first == second == ("srv-1", "https://example/mcp")


# ---------------------------------------------------------------------------
# Grouped fields
# ---------------------------------------------------------------------------


def test_extract_group_takes_fields_from_one_item():
    content = json.dumps({"items": [{"itemId": "1", "name": "Basic"}, {"itemId": "2", "itemPrice": "0.10"}]})
    assert extract_group(content, ("itemId", "itemPrice")) == {"itemId": "2", "itemPrice": "0.10"}


def test_extract_group_without_a_complete_item_is_not_found():
    content = json.dumps({"items": [{"itemId": "1"}, {"itemPrice": "0.10"}]})
    assert extract_group(content, ("itemId", "itemPrice")) is NOT_FOUND


def test_extract_group_pairs_server_id_and_url_from_named_server():
    values = extract_group(LISTING, ("serverId", "mcpServerUrl"), near="PDFShift")
    assert values == {"serverId": "srv-1", "mcpServerUrl": "https://example/mcp"}


def test_extract_where_selects_matching_payment_method():
    content = json.dumps(
        {
            "paymentMethods": [
                {"paymentMethod": "USDC_BASE", "walletAddress": "0xmainnet"},
                {"paymentMethod": "USDC_BASE_SEPOLIA", "walletAddress": "0xsepolia"},
            ]
        }
    )
    where = (("paymentMethod", "USDC_BASE_SEPOLIA"),)
    assert extract(content, "serverWalletAddress", where=where) == "0xsepolia"
    assert extract(content, "serverWalletAddress", where=(("paymentMethod", "USDC_SOLANA"),)) is NOT_FOUND


# ---------------------------------------------------------------------------
# require_group / defer_reference
# ---------------------------------------------------------------------------


def test_require_group_returns_values():
    values = require_group('{"itemId": "1", "itemPrice": "0.05"}', ("itemId", "itemPrice"), StageId.PRICING)
    assert values == {"itemId": "1", "itemPrice": "0.05"}


def test_require_group_raises_extraction_failure():
    with pytest.raises(ExtractionFailure, match="itemPrice") as exc_info:
        require_group("nothing useful", ("itemPrice",), StageId.PRICING)
    assert exc_info.value.field == "itemPrice"
    assert exc_info.value.stage is StageId.PRICING


def test_require_group_names_the_field_no_record_carries():
    content = '{"items": [{"itemId": "1"}, {"itemId": "2"}]}'
    with pytest.raises(ExtractionFailure) as exc_info:
        require_group(content, ("itemId", "itemPrice"), StageId.PRICING)
    assert exc_info.value.field == "itemPrice"


def test_defer_reference_names_field_and_label():
    phrase = defer_reference("serverId", "List servers response")
    assert "serverId" in phrase
    assert "List servers response" in phrase
