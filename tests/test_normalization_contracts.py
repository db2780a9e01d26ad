from src.domain.normalization import (
    detect_shape,
    normalize_domain,
    normalize_email,
    normalize_event,
    normalize_phone,
    normalize_postal_code,
    normalize_state,
    unwrap_events,
)


def test_scalar_normalizers_contract():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert normalize_email("not-an-email") is None
    assert normalize_phone("+1 (415) 555-0100") == "4155550100"
    assert normalize_phone("555") is None
    assert normalize_domain("https://www.Acme.io/about") == "acme.io"
    assert normalize_state("california") == "CA"
    assert normalize_state("tx") == "TX"
    assert normalize_state("Ontario") == "Ontario"
    assert normalize_postal_code("94107-1234") == "94107"


def test_envelope_shape_maps_person_and_company():
    event = {
        "person": {
            "first_name": "Dana",
            "last_name": "Scully",
            "email": "DANA@fbi.gov",
            "title": "Agent",
            "location": {"city": "Washington", "state": "District of Columbia"},
            "favorite_color": "blue",
        },
        "company": {"name": "FBI", "domain": "fbi.gov", "industry": "Government"},
    }

    fields = normalize_event(event)

    assert fields.shape == "envelope"
    assert fields.email == "dana@fbi.gov"
    assert fields.full_name == "Dana Scully"
    assert fields.company_domain == "fbi.gov"
    assert fields.company_industry == "government"
    assert fields.state == "DC"
    assert fields.extra["person.favorite_color"] == "blue"
    assert fields.routing_eligible is True


def test_cloud_mailer_shape_reads_recipient():
    event = {"type": "email.opened", "data": {"to": ["reader@acme.io"], "subject": "Hello"}}

    fields = normalize_event(event)

    assert fields.shape == "cloud_mailer"
    assert fields.email == "reader@acme.io"
    assert fields.company_domain == "acme.io"
    assert fields.extra["subject"] == "Hello"
    assert fields.extra["mailer_event_type"] == "email.opened"


def test_flat_shape_prefers_best_validated_email():
    event = {
        "pixel_id": "px-1",
        "resolution": {
            "FIRST_NAME": "Sam",
            "LAST_NAME": "Lee",
            "PERSONAL_EMAILS": "sam@gmail.com, other@gmail.com",
            "BUSINESS_EMAILS": "sam@lee.co",
            "BUSINESS_EMAIL_VALIDATION_STATUS": "Valid (esp)",
            "PERSONAL_EMAIL_VALIDATION_STATUS": "catch-all",
            "MOBILE_PHONE": "1-212-555-0199",
            "PERSONAL_STATE": "New York",
            "PERSONAL_ZIP": "10001",
        },
    }

    fields = normalize_event(event)

    assert fields.shape == "flat"
    assert fields.email == "sam@lee.co"
    assert fields.phone == "2125550199"
    assert fields.state == "NY"
    assert fields.postal_code == "10001"
    assert "pixel_id" not in fields.extra


def test_top_level_flat_keys_win_over_nested():
    event = {"FIRST_NAME": "Top", "event_data": {"FIRST_NAME": "Nested", "LAST_NAME": "Kept"}}

    fields = normalize_event(event)

    assert fields.first_name == "Top"
    assert fields.last_name == "Kept"


def test_generic_shape_keeps_unknown_keys_in_extra():
    fields = normalize_event({"email": "a@x.com", "industry": "Solar", "state": "CA", "campaign": "spring"})

    assert detect_shape({"email": "a@x.com"}) == "generic"
    assert fields.shape == "generic"
    assert fields.company_industry == "solar"
    assert fields.state == "CA"
    assert fields.extra == {"campaign": "spring"}


def test_lead_without_contact_keys_is_not_routing_eligible():
    fields = normalize_event({"first_name": "Only", "city": "Austin"})

    assert fields.shape == "generic"
    assert fields.routing_eligible is False


def test_event_without_any_canonical_field_is_unparsed():
    fields = normalize_event({"foo": "bar", "nested": {"x": 1}})

    assert fields.shape == "unparsed"
    assert fields.is_empty


def test_invalid_email_is_kept_out_of_canonical_fields():
    fields = normalize_event({"email": "broken@", "phone": "4155550100"})

    assert fields.email is None
    assert fields.extra["invalid_email"] == "broken@"
    assert fields.routing_eligible is True


def test_malformed_website_does_not_fail_the_event():
    assert normalize_domain("http://[broken") is None

    fields = normalize_event({"email": "a@x.com", "website": "http://[broken", "state": "CA"})

    assert fields.email == "a@x.com"
    assert fields.state == "CA"
    assert fields.routing_eligible


def test_unwrap_events_accepts_list_object_and_wrappers():
    assert unwrap_events([{"a": 1}, {"b": 2}]) == [{"a": 1}, {"b": 2}]
    assert unwrap_events({"a": 1}) == [{"a": 1}]
    assert unwrap_events({"result": [{"a": 1}]}) == [{"a": 1}]
    assert unwrap_events({"events": [{"a": 1}]}) == [{"a": 1}]
    assert unwrap_events("nope") == []
