#!/usr/bin/env python3
"""
AI rewrite step: queue item -> pending article
Sends the feed item to an LLM, parses the JSON article it returns, cleans up
the topics and bolds each topic once in the body before storing the article.
"""

import json
import logging
import re
from typing import Dict, List, Optional, Tuple

import anthropic
import requests

from config_loader import get_ai_api_key, get_ai_config, load_article_prompt
from pipeline_models import (
    AIArticleResult,
    AIResponseError,
    AlreadyCompletedError,
    AlreadyProcessingError,
    Article,
    BatchResult,
    Category,
    ConfigError,
    InvalidStateError,
    NotFoundError,
    Producer,
    QueueItem,
    QUEUE_COMPLETED,
    QUEUE_PROCESSING,
    QUEUE_WAITING,
)

logger = logging.getLogger(__name__)

MAX_TOPICS = 10
MIN_TOPIC_LENGTH = 2

_EDGE_PUNCTUATION = re.compile(r'^[\W_]+|[\W_]+$')


class ChatCompletionsClient:
    """OpenAI-compatible chat completions endpoint (Perplexity, OpenAI, OpenRouter...)"""

    def __init__(self, api_key: str, endpoint: str, model: str, max_tokens: int = 4000,
                 temperature: float = 0.2, timeout: int = 120, session=None):
        self.api_key = api_key
        self.endpoint = endpoint
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.session = session or requests.Session()

    def complete(self, system: str, user: str) -> str:
        headers = {'Authorization': f'Bearer {self.api_key}', 'Content-Type': 'application/json'}
        payload = {
            'model': self.model,
            'temperature': self.temperature,
            'max_tokens': self.max_tokens,
            'messages': [
                {'role': 'system', 'content': system},
                {'role': 'user', 'content': user},
            ],
        }
        try:
            response = self.session.post(self.endpoint, headers=headers, json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise AIResponseError(f"AI request failed: {e}") from e
        except ValueError as e:
            raise AIResponseError(f"AI service returned non-JSON response: {e}") from e

        try:
            return data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            raise AIResponseError("No content in AI response")


class AnthropicClient:
    """Claude via the anthropic SDK"""

    def __init__(self, api_key: str, model: str, max_tokens: int = 4000,
                 temperature: float = 0.2, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def complete(self, system: str, user: str) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": user}],
            )
        except anthropic.APIError as e:
            raise AIResponseError(f"AI request failed: {e}") from e

        for block in response.content:
            if getattr(block, 'type', None) == 'text':
                return block.text
        raise AIResponseError("No content in AI response")


def build_client(config: Optional[Dict] = None, api_key: Optional[str] = None):
    """Create the client named by system.json's ai.provider"""
    config = config if config is not None else get_ai_config()
    api_key = api_key or get_ai_api_key()
    provider = config.get('provider', 'chat_completions')

    if provider == 'anthropic':
        return AnthropicClient(
            api_key,
            model=config.get('model', 'claude-sonnet-4-5'),
            max_tokens=config.get('max_tokens', 4000),
            temperature=config.get('temperature', 0.2),
        )
    if provider == 'chat_completions':
        if not config.get('endpoint'):
            raise ConfigError("ai.endpoint is required for the chat_completions provider")
        return ChatCompletionsClient(
            api_key,
            endpoint=config['endpoint'],
            model=config.get('model', 'sonar-pro'),
            max_tokens=config.get('max_tokens', 4000),
            temperature=config.get('temperature', 0.2),
            timeout=config.get('timeout', 120),
        )
    raise ConfigError(f"Unknown AI provider: {provider}")


def build_prompt(item: QueueItem, producer: Optional[Producer], category: Optional[Category],
                 category_names: Optional[List[str]] = None,
                 system_prompt: Optional[str] = None) -> Tuple[str, str]:
    """System + user messages for rewriting one queue item"""
    system = system_prompt if system_prompt is not None else load_article_prompt()
    names = category_names or ([category.name] if category else [])

    user = f"""Write a news article based on this feed item.

Title: {item.title}
Source: {producer.name if producer else 'Unknown'}
URL: {item.url}
Feed categories: {', '.join(item.rss_categories) or 'none'}
Suggested category: {category.name if category else 'none'}
Available categories: {json.dumps(names)}

Summary:
{item.description or 'No description available'}"""
    return system, user


def extract_json_block(text: str) -> str:
    """First balanced top-level {...} in text, ignoring braces inside JSON strings"""
    start = (text or '').find('{')
    if start == -1:
        raise AIResponseError("No JSON object found in AI response")

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == '{':
            depth += 1
        elif char == '}':
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    raise AIResponseError("Unterminated JSON object in AI response")


def _string_list(data: Dict, key: str, log: logging.Logger) -> List[str]:
    value = data.get(key)
    if not isinstance(value, list):
        log.warning(f"⚠️ AI response has missing or invalid '{key}', using empty list")
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def parse_ai_response(text: str, log: Optional[logging.Logger] = None) -> AIArticleResult:
    """Parse the article JSON out of an LLM reply.

    Surrounding prose is tolerated. Malformed JSON or a missing title/body is a
    hard failure; bad imageGenPrompts/topics arrays degrade to empty lists.
    """
    log = log or logger
    block = extract_json_block(text)
    try:
        data = json.loads(block)
    except json.JSONDecodeError as e:
        raise AIResponseError(f"Malformed JSON in AI response: {e}") from e

    if not isinstance(data, dict):
        raise AIResponseError("AI response is not a JSON object")

    title = str(data.get('title') or '').strip()
    body = str(data.get('body') or '').strip()
    if not title or not body:
        raise AIResponseError("AI response is missing title or body")

    source_urls = data.get('sourceUrls') if isinstance(data.get('sourceUrls'), list) else []

    return AIArticleResult(
        title=title,
        body=body,
        excerpt=str(data.get('excerpt') or '').strip(),
        category=data.get('category') if isinstance(data.get('category'), str) else None,
        source_urls=[str(u) for u in source_urls if u],
        image_prompts=_string_list(data, 'imageGenPrompts', log),
        topics=_string_list(data, 'topics', log),
    )


def sanitize_topics(topics: List[str], max_topics: int = MAX_TOPICS) -> List[str]:
    """Single-token topics, deduped case-insensitively in first-seen order, capped"""
    seen = set()
    cleaned = []
    for topic in topics or []:
        if not isinstance(topic, str):
            continue
        token = _EDGE_PUNCTUATION.sub('', topic.strip())
        if len(token) < MIN_TOPIC_LENGTH or re.search(r'\s', token):
            continue
        key = token.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(token)
        if len(cleaned) >= max_topics:
            break
    return cleaned


def _standalone_pattern(topic: str):
    # Neighbours may not be letters, digits or one of #+-
    return re.compile(
        rf"(?<![^\W_])(?<![#+\-]){re.escape(topic)}(?![^\W_])(?![#+\-])",
        re.IGNORECASE,
    )


def annotate_topics(body: str, topics: List[str]) -> str:
    """Bold the first standalone occurrence of each topic not already bolded"""
    for topic in topics:
        if f"**{topic.lower()}**" in body.lower():
            continue
        match = _standalone_pattern(topic).search(body)
        if match:
            body = f"{body[:match.start()]}**{match.group(0)}**{body[match.end():]}"
    return body


def _resolve_category_id(db, ai_category: Optional[str], fallback: Category) -> int:
    if ai_category:
        match = db.find_category(ai_category)
        if match is not None and match.is_active:
            return match.id
    return fallback.id


def process_queue_item(db, item_id: int, client, now: Optional[float] = None,
                       log: Optional[logging.Logger] = None) -> Article:
    """Claim a waiting/failed item, generate its article and mark it completed.

    Any failure after the claim marks the item failed and re-raises.
    """
    log = log or logger
    if not db.claim_queue_item(item_id, now=now):
        item = db.get_queue_item(item_id)
        if item is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        if item.status == QUEUE_PROCESSING:
            raise AlreadyProcessingError(f"Queue item {item_id} is already being processed")
        if item.status == QUEUE_COMPLETED:
            raise AlreadyCompletedError(f"Queue item {item_id} has already been processed")
        raise InvalidStateError(f"Queue item {item_id} cannot be processed from status {item.status}")

    try:
        item = db.get_queue_item(item_id)
        if item is None:
            raise NotFoundError(f"Queue item {item_id} not found")
        producer = db.get_producer(item.producer_id)
        if producer is None:
            raise NotFoundError("Producer not found")
        category = db.get_category(producer.category_id)
        if category is None:
            raise NotFoundError("Producer category not found")

        names = [c.name for c in db.list_categories(active_only=True)]
        system, user = build_prompt(item, producer, category, category_names=names)
        log.info(f"🤖 Generating article for queue item {item_id}: {item.title[:60]}")
        result = parse_ai_response(client.complete(system, user), log=log)

        topics = sanitize_topics(result.topics)
        article_id = db.complete_queue_item(item_id, {
            'title': result.title,
            'body': annotate_topics(result.body, topics),
            'excerpt': result.excerpt,
            'category_id': _resolve_category_id(db, result.category, category),
            'topics': topics,
            'source_urls': result.source_urls or [item.url],
            'image_prompts': result.image_prompts,
        }, now=now)
    except Exception as e:
        log.error(f"❌ Processing failed for queue item {item_id}: {e}")
        db.fail_queue_item(item_id, str(e) or type(e).__name__, now=now)
        raise

    log.info(f"✅ Created article {article_id} from queue item {item_id}")
    return db.get_article(article_id)


def process_waiting_items(db, client, limit: int = 5,
                          log: Optional[logging.Logger] = None) -> BatchResult:
    """Process the oldest waiting items one at a time; failures don't stop the batch"""
    log = log or logger
    batch = BatchResult()
    items = db.list_queue_items(status=QUEUE_WAITING, sort_by='oldest', limit=limit)

    for item in items:
        try:
            process_queue_item(db, item.id, client, log=log)
            batch.processed.append(item.id)
        except InvalidStateError as e:
            batch.skipped[item.id] = str(e)
        except Exception as e:
            batch.failed[item.id] = str(e)

    log.info(f"📊 Batch complete: {len(batch.processed)} processed, "
             f"{len(batch.failed)} failed, {len(batch.skipped)} skipped")
    return batch
