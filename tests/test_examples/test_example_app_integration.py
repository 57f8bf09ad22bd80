"""Integration tests that exercise the example Django app entrypoint."""

import os
import subprocess
import sys
from pathlib import Path

EXAMPLES_DIR = Path(__file__).resolve().parents[2] / "examples"
REPO_ROOT = EXAMPLES_DIR.parent


def _run_example_manage(*args: str, **env_overrides: str) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    env["DJANGO_SETTINGS_MODULE"] = "settings"
    env["PYTHONPATH"] = os.pathsep.join([str(REPO_ROOT / "src"), str(REPO_ROOT)])
    env.update(env_overrides)
    return subprocess.run(
        [sys.executable, "manage.py", *args],
        cwd=EXAMPLES_DIR,
        env=env,
        capture_output=True,
        text=True,
        check=False,
    )


def test_example_app_django_check_passes() -> None:
    result = _run_example_manage("check")
    assert result.returncode == 0, result.stderr


def test_example_app_reads_stripe_keys_from_environment() -> None:
    result = _run_example_manage(
        "shell",
        "-c",
        "from django_boutique.settings import get_config; print(get_config().stripe.webhook_secret)",
        STRIPE_WEBHOOK_SECRET="whsec_example",
    )
    assert result.returncode == 0, result.stderr
    assert "whsec_example" in result.stdout


def test_example_app_routes_shop_urls() -> None:
    result = _run_example_manage(
        "shell",
        "-c",
        "from django.urls import reverse; print(reverse('shop:stripe-webhook'))",
    )
    assert result.returncode == 0, result.stderr
    assert "/shop/webhooks/stripe/" in result.stdout
