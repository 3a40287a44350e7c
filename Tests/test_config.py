from sendy_sync import config

COMPLETE = {
    "SENDY_INSTALLATION_URL": "https://sendy.example.com",
    "SENDY_API_KEY": "key",
    "SENDY_LIST_ID": "L1",
    "CALENDLY_PAT": "pat",
    "SHOPIFY_SHOP_NAME": "demo",
    "SHOPIFY_ACCESS_TOKEN": "shpat",
    "CALENDLY_WEBHOOK_SECRET": "secret",
}


def test_complete_configuration_is_valid():
    errors, warnings = config.validate_configuration(("sendy", "calendly", "shopify", "webhook"), env=COMPLETE)
    assert errors == []
    assert warnings == []


def test_missing_sendy_settings():
    errors, _ = config.validate_configuration(("sendy",), env={})
    assert "SENDY_INSTALLATION_URL not configured" in errors
    assert "SENDY_API_KEY not configured" in errors


def test_sendy_url_needs_scheme():
    env = dict(COMPLETE, SENDY_INSTALLATION_URL="sendy.example.com")
    errors, _ = config.validate_configuration(("sendy",), env=env)
    assert errors == ["SENDY_INSTALLATION_URL must start with http:// or https://"]


def test_only_required_integrations_are_checked():
    errors, _ = config.validate_configuration(("calendly",), env={"CALENDLY_PERSONAL_ACCESS_TOKEN": "t"})
    assert errors == []
    errors, _ = config.validate_configuration(("shopify",), env={})
    assert len(errors) == 2


def test_webhook_without_secret_only_warns():
    env = dict(COMPLETE, CALENDLY_WEBHOOK_SECRET="")
    errors, warnings = config.validate_configuration(("sendy", "webhook"), env=env)
    assert errors == []
    assert len(warnings) == 1


def test_config_summary_hides_secrets(monkeypatch):
    monkeypatch.setattr(config, "CALENDLY_WEBHOOK_SECRET", "secret")
    summary = config.get_config_summary()
    assert summary["webhook_secret_configured"] is True
    assert "secret" not in summary.values()
