"""
Unit tests for PromptBuilder.
"""

from mailguard.llm.prompt_builder import PROMPT_SEPARATOR


def test_system_prompt_lists_model_labels(prompt_builder):
    system_prompt = prompt_builder.build_system_prompt()

    assert "phishing" in system_prompt
    assert "data_exfiltration" in system_prompt
    assert "brief_analysis" in system_prompt
    assert "{{" not in system_prompt


def test_prompt_starts_with_fixed_instructions(prompt_builder, phishing_email, newsletter_email):
    system_prompt = prompt_builder.build_system_prompt()

    for email in (phishing_email, newsletter_email):
        prompt = prompt_builder.build_prompt(email)
        assert prompt.startswith(system_prompt + PROMPT_SEPARATOR)


def test_user_prompt_contains_email_fields(prompt_builder, phishing_email):
    user_prompt = prompt_builder.build_user_prompt(phishing_email)

    assert "Subject: Urgent: verify your account" in user_prompt
    assert "From: Security@Examp1e-Bank.com" in user_prompt
    assert "http://examp1e-bank.com/verify" in user_prompt
    assert "Click the link below" in user_prompt
