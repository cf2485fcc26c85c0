from folio.core.html_validator import (
    HtmlValidationStatus, ValidationMode, clean_ai_generated_html, is_trusted_domain, validate_html,
)

MINIMAL = "<!DOCTYPE html><html><head></head><body></body></html>"
EVIL_SCRIPT = (
    '<!DOCTYPE html><html><head><script src="https://evil.example/x.js"></script></head>'
    "<body></body></html>"
)


def test_minimal_document_is_valid():
    result = validate_html(MINIMAL)
    assert result.is_valid
    assert result.warnings == []
    assert result.status == HtmlValidationStatus.VALID


def test_missing_head_is_invalid():
    result = validate_html("<!DOCTYPE html><html><body></body></html>")
    assert not result.is_valid
    assert result.error_message == "Missing <head> tag"
    assert result.status == HtmlValidationStatus.INVALID


def test_empty_and_doctype_checks():
    assert validate_html("   ").error_message == "HTML content is empty"
    assert validate_html("<html><head></head><body></body></html>").error_message == "Missing DOCTYPE declaration"
    assert validate_html("<!doctype HTML><html><head></head><body></body></html>").is_valid


def test_untrusted_script_strict_mode():
    result = validate_html(EVIL_SCRIPT, ValidationMode.STRICT, ["cdn.example.com"])
    assert not result.is_valid
    assert "https://evil.example/x.js" in result.error_message


def test_untrusted_script_warning_mode():
    result = validate_html(EVIL_SCRIPT, ValidationMode.WARNING, ["cdn.example.com"])
    assert result.is_valid
    assert len(result.warnings) == 1
    assert "https://evil.example/x.js" in result.warnings[0]
    assert result.status == HtmlValidationStatus.WARNING
    assert result.detail == result.warnings[0]


def test_permissive_mode_skips_script_checks():
    result = validate_html(EVIL_SCRIPT, ValidationMode.PERMISSIVE, [])
    assert result.is_valid
    assert result.warnings == []


def test_trusted_relative_and_local_scripts_pass():
    html = (
        "<!DOCTYPE html><html><head>"
        '<script src="https://cdn.example.com/lib.js"></script>'
        '<script src="https://static.cdn.example.com/lib.js"></script>'
        '<script src="/js/app.js"></script>'
        '<script src="http://localhost:8000/dev.js"></script>'
        "</head><body></body></html>"
    )
    result = validate_html(html, ValidationMode.STRICT, ["cdn.example.com"])
    assert result.is_valid
    assert result.warnings == []


def test_is_trusted_domain_matches_host_not_substring():
    assert is_trusted_domain("https://CDN.example.com/x.js", ["cdn.example.com"])
    assert not is_trusted_domain("https://cdn.example.com.evil.io/x.js", ["cdn.example.com"])
    assert not is_trusted_domain("https://evilcdn.example.com/x.js", ["cdn.example.com"])


def test_unclosed_element_reports_line():
    html = "<!DOCTYPE html>\n<html>\n<head></head>\n<body>\n<div>\n<span>text</div>\n</body>\n</html>"
    result = validate_html(html)
    assert not result.is_valid
    assert result.error_message.startswith("HTML parse error: <span>")
    assert "(line 6)" in result.error_message


def test_stray_end_tag_is_invalid():
    html = "<!DOCTYPE html><html><head></head><body></section></body></html>"
    result = validate_html(html)
    assert not result.is_valid
    assert "</section>" in result.error_message


def test_void_and_optional_end_elements_are_allowed():
    html = (
        "<!DOCTYPE html><html><head><meta charset='utf-8'><link rel='stylesheet' href='a.css'></head>"
        "<body><p>one<p>two<br><img src='x.png'><ul><li>a<li>b</ul></body></html>"
    )
    assert validate_html(html).is_valid


def test_clean_ai_generated_html_strips_fences():
    assert clean_ai_generated_html("```html\n<!DOCTYPE html>\n```") == "<!DOCTYPE html>"
    assert clean_ai_generated_html("```\n<p>x</p>\n```") == "<p>x</p>"
    assert clean_ai_generated_html("  <p>x</p>  ") == "<p>x</p>"
