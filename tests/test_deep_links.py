from conftest import FORM_URL
from loanflow.services.deep_links import DeepLinkGenerator


def test_build_prefills_loan_role_and_email(deep_links):
    url = deep_links.build("LC0001", "Guarantor", "ben+loans@coop.test")

    assert url == (
        "https://docs.example.com/forms/d/e/loan-form/viewform?"
        "entry.1001=LC0001&entry.1002=Guarantor&entry.1003=ben%2Bloans%40coop.test"
    )


def test_build_appends_to_url_without_viewform():
    generator = DeepLinkGenerator(
        "https://forms.example.com/apply?lang=en",
        loan_entry="loan",
        role_entry="role",
        email_entry="email",
    )

    assert generator.build("LC0002", "Applicant", None) == (
        "https://forms.example.com/apply?lang=en&loan=LC0002&role=Applicant&email="
    )


def test_build_without_configuration_returns_empty_link(caplog):
    generator = DeepLinkGenerator("", loan_entry="", role_entry="", email_entry="")

    assert generator.build("LC0001", "Applicant", "ada@coop.test") == ""
    assert "Deep link unavailable" in caplog.text


def test_build_with_missing_entry_ids_returns_empty_link():
    generator = DeepLinkGenerator(FORM_URL, loan_entry="entry.1", role_entry="", email_entry="entry.3")

    assert generator.build("LC0001", "Applicant", "ada@coop.test") == ""
