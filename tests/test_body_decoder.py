from conftest import b64

from expense_sync.body_decoder import decode_body, decode_message, html_to_text
from expense_sync.extractors import extract_amount


def _part(mime_type, text=None, parts=None):
    part = {"mimeType": mime_type, "body": {}}
    if text is not None:
        part["body"]["data"] = b64(text)
    if parts is not None:
        part["parts"] = parts
    return part


def test_plain_text_preferred_over_html():
    payload = _part("multipart/alternative", parts=[
        _part("text/plain", "Rs 100 debited"),
        _part("text/html", "<p>Something else</p>"),
    ])
    assert decode_body(payload) == "Rs 100 debited"


def test_nested_plain_parts_are_concatenated_in_order():
    payload = _part("multipart/mixed", parts=[
        _part("multipart/alternative", parts=[
            _part("text/plain", "first "),
            _part("text/html", "<b>ignored</b>"),
        ]),
        _part("multipart/related", parts=[
            _part("multipart/alternative", parts=[_part("text/plain", "second")]),
        ]),
        _part("application/pdf", "%PDF"),
    ])
    assert decode_body(payload) == "first second"


def test_html_only_body_is_stripped():
    payload = _part("multipart/alternative", parts=[
        _part("text/html", "Amount debited: <b>Rs. 250.00</b> at STORE"),
    ])
    body = decode_body(payload)
    assert body == "Amount debited: Rs. 250.00 at STORE"
    assert extract_amount(body) == 250.00


def test_single_part_html_message():
    payload = _part("text/html", "<html><body><p>Hello</p><p>World</p></body></html>")
    assert decode_body(payload) == "Hello World"


def test_single_part_without_type_is_sniffed():
    assert decode_body({"body": {"data": b64("<div>Paid</div>")}}) == "Paid"
    assert decode_body({"body": {"data": b64("Paid Rs 5")}}) == "Paid Rs 5"


def test_empty_payload_gives_empty_body():
    assert decode_body({}) == ""
    assert decode_body(_part("multipart/mixed", parts=[])) == ""


def test_malformed_base64_part_is_skipped():
    payload = _part("multipart/alternative", parts=[
        {"mimeType": "text/plain", "body": {"data": "@@@"}},
        _part("text/html", "<p>Rs 10 spent</p>"),
    ])
    assert decode_body(payload) == "Rs 10 spent"


def test_script_and_style_blocks_are_removed():
    html = (
        "<style type='text/css'>\np { color: red; }\n</style>"
        "<p>Visible</p>"
        "<SCRIPT>\nvar x = '<b>hidden</b>';\n</SCRIPT>"
    )
    assert html_to_text(html) == "Visible"


def test_common_entities_are_resolved():
    html = "Tom &amp; Jerry&nbsp;&lt;3&gt; &quot;x&quot; &#39;y&apos; &#65;"
    assert html_to_text(html) == "Tom & Jerry <3> \"x\" 'y' A"


def test_other_entities_are_left_unresolved():
    assert html_to_text("<p>Paid &#8377;500 &rsquo;ok</p>") == "Paid &#8377;500 &rsquo;ok"


def test_hex_and_unterminated_entities_are_left_unresolved():
    html = "A&#x41;B &#X20B9;5 &copy 2026 &amp x &nbsp y &#65 z"
    assert html_to_text(html) == "A&#x41;B &#X20B9;5 &copy 2026 &amp x &nbsp y &#65 z"


def test_whitespace_is_collapsed():
    html = "<table>\n  <tr><td>Rs 5</td>\n\n\n<td>paid</td></tr>\n</table>"
    assert html_to_text(html) == "Rs 5 paid"


def test_decode_message_reads_subject_and_headers(gmail_message):
    message = gmail_message(subject="UPI alert", plain="Rs 10 paid")
    raw = decode_message(message)
    assert raw.subject == "UPI alert"
    assert raw.body == "Rs 10 paid"
    assert raw.header("date") == "Mon, 05 Oct 2026 14:07:00 +0530"


def test_decode_message_without_subject():
    raw = decode_message({"payload": {"mimeType": "text/plain", "body": {"data": b64("hi")}}})
    assert raw.subject == ""
    assert raw.body == "hi"
