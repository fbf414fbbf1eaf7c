#!/usr/bin/env python3
"""
Configuration loader for the headline pipeline
Loads all configuration from config/ directory with validation
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from pipeline_models import ConfigError

CONFIG_DIR = Path(os.getenv('HEADLINE_CONFIG_DIR', Path(__file__).parent / "config"))

# Refresh interval presets offered when creating a producer
REFRESH_INTERVALS = {
    '1hr': 60,
    '6hr': 6 * 60,
    '12hr': 12 * 60,
    '24hr': 24 * 60,
    '1week': 7 * 24 * 60,
}
DEFAULT_REFRESH_INTERVAL = '24hr'

AI_PROVIDERS = ('chat_completions', 'anthropic')


def _load_json(filename: str) -> Dict:
    try:
        with open(CONFIG_DIR / filename, 'r', encoding='utf-8') as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {CONFIG_DIR / filename}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Config file {filename} is not valid JSON: {e}")


def load_system_config() -> Dict:
    """Load system configuration (database, HTTP, scheduler, AI service)."""
    return _load_json("system.json")


def load_limits_config() -> Dict:
    """Load limits configuration (article counts, topic caps, search limits)."""
    return _load_json("limits.json")


def load_categories_config() -> Dict:
    """Load seed categories and their filter keywords."""
    return _load_json("categories.json")


def load_article_prompt() -> str:
    """Load the AI rewrite system prompt as plain text."""
    try:
        with open(CONFIG_DIR / "article_prompt.txt", 'r', encoding='utf-8') as f:
            return f.read()
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {CONFIG_DIR / 'article_prompt.txt'}")


def get_limit(key: str, default: Optional[int] = None):
    """Get a single value from limits.json."""
    return load_limits_config().get(key, default)


def get_ai_config() -> Dict:
    return load_system_config().get('ai', {})


def get_ai_api_key() -> str:
    """Read the AI service key from the environment variable named in system.json."""
    ai = get_ai_config()
    default_env = 'ANTHROPIC_API_KEY' if ai.get('provider') == 'anthropic' else 'AI_API_KEY'
    env_name = ai.get('api_key_env') or default_env
    api_key = os.getenv(env_name)
    if not api_key:
        raise ConfigError(f"{env_name} environment variable not set")
    return api_key


def get_database_path() -> Path:
    system = load_system_config()
    path = Path(os.getenv('HEADLINE_DB_PATH', system.get('database_path', 'data/headlines.db')))
    if not path.is_absolute():
        path = CONFIG_DIR.parent / path
    return path


def get_request_headers() -> Dict[str, str]:
    """Headers sent with every feed request."""
    system = load_system_config()
    return {
        'User-Agent': system.get('user_agent', 'Headline Pipeline RSS Parser/1.0'),
        'Accept': system.get('accept_header', 'application/rss+xml, application/xml, text/xml, */*'),
    }


def get_request_timeout() -> int:
    return load_system_config().get('request_timeout', 30)


def get_seed_categories() -> List[Dict]:
    """Seed categories as a list of {name, slug, keywords}."""
    categories = load_categories_config()
    return [
        {'slug': slug, 'name': data['name'], 'keywords': data.get('keywords', [])}
        for slug, data in categories.items()
    ]


def refresh_interval_to_minutes(interval: str) -> int:
    """Convert a refresh preset ('1hr', '24hr', ...) to minutes. Unknown presets get 24 hours."""
    return REFRESH_INTERVALS.get(interval, REFRESH_INTERVALS[DEFAULT_REFRESH_INTERVAL])


def get_all_config() -> Dict:
    """Load all configuration at once."""
    return {
        'system': load_system_config(),
        'limits': load_limits_config(),
        'categories': load_categories_config(),
        'article_prompt': load_article_prompt(),
    }


def validate_config() -> Dict[str, List[str]]:
    """
    Validate all configuration files.
    Returns dict with any errors found, empty dict if all valid.
    """
    errors = {}

    try:
        system = load_system_config()

        required_system_keys = ['database_path', 'user_agent', 'request_timeout', 'scheduler', 'ai']
        missing = [k for k in required_system_keys if k not in system]
        if missing:
            errors['system.json'] = [f"Missing required keys: {', '.join(missing)}"]

        scheduler = system.get('scheduler', {})
        for key in ['interval_seconds', 'max_workers']:
            value = scheduler.get(key)
            if not isinstance(value, int) or value < 1:
                errors.setdefault('system.json', []).append(f"scheduler.{key} must be positive integer")

        ai = system.get('ai', {})
        if ai.get('provider') not in AI_PROVIDERS:
            errors.setdefault('system.json', []).append(
                f"ai.provider must be one of: {', '.join(AI_PROVIDERS)}"
            )
        if ai.get('provider') == 'chat_completions' and not isinstance(ai.get('endpoint'), str):
            errors.setdefault('system.json', []).append("ai.endpoint must be string")
        if not isinstance(ai.get('model'), str):
            errors.setdefault('system.json', []).append("ai.model must be string")

    except ConfigError as e:
        errors['system.json'] = [f"Failed to load: {str(e)}"]

    try:
        limits = load_limits_config()

        for key, value in limits.items():
            if not isinstance(value, (int, float)) or value < 0:
                errors.setdefault('limits.json', []).append(f"{key} must be positive number")

        if limits.get('max_topics', 10) > 10:
            errors.setdefault('limits.json', []).append("max_topics cannot exceed 10")

    except ConfigError as e:
        errors['limits.json'] = [f"Failed to load: {str(e)}"]

    try:
        categories = load_categories_config()

        for slug, cat_data in categories.items():
            if 'name' not in cat_data:
                errors.setdefault('categories.json', []).append(f"Category {slug} missing: name")

            keywords = cat_data.get('keywords', [])
            if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
                errors.setdefault('categories.json', []).append(
                    f"Category {slug} keywords must be list of strings"
                )

    except ConfigError as e:
        errors['categories.json'] = [f"Failed to load: {str(e)}"]

    try:
        prompt = load_article_prompt()
        if not prompt.strip():
            errors['article_prompt.txt'] = ["File is empty"]
    except ConfigError as e:
        errors['article_prompt.txt'] = [f"Failed to load: {str(e)}"]

    return errors


if __name__ == "__main__":
    print("Testing configuration loader...")
    print("=" * 60)

    try:
        config = get_all_config()

        print(f"\n✅ System config loaded:")
        print(f"   Database: {config['system']['database_path']}")
        print(f"   AI provider: {config['system']['ai']['provider']}")

        print(f"\n✅ Limits config loaded:")
        print(f"   Max topics: {config['limits']['max_topics']}")
        print(f"   Description max chars: {config['limits']['description_max_chars']}")

        print(f"\n✅ Categories config loaded:")
        print(f"   Categories: {', '.join(config['categories'].keys())}")

        print(f"\n🔍 Running validation...")
        errors = validate_config()

        if errors:
            print("\n❌ Validation errors found:")
            for file, error_list in errors.items():
                print(f"\n  {file}:")
                for error in error_list:
                    print(f"    - {error}")
        else:
            print("\n✅ All configuration files valid!")

    except ConfigError as e:
        print(f"\n❌ Error during testing: {e}")
