"""
Retrying Groq chat completion client.

Every classifier and assistant request goes through ``process_with_retry``,
which backs off exponentially between attempts and raises TransportError once
the attempts are used up. Request timings and recent failures are kept in
memory and, when a metrics file is configured, mirrored to JSON after every
request.
"""

from groq import Groq
from typing import Dict, List, Optional
from datetime import datetime
import asyncio
import json
import logging
import os
from pathlib import Path

from src.crm_sync.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

MAX_RECORDED_FAILURES = 100


def _empty_metrics() -> Dict:
    return {
        'requests': 0,
        'successes': 0,
        'failures': 0,
        'avg_response_time': 0.0,
        'recent_failures': []
    }


class EnhancedGroqClient:
    """
    Groq client with retries and request metrics.

    Attributes:
        client: Underlying ``groq.Groq`` SDK client
        metrics_file: JSON file metrics are mirrored to, if any
        retry_base_delay: Base of the backoff; attempt ``n`` waits ``base ** n`` seconds
    """

    def __init__(self, api_key: Optional[str] = None, metrics_file: Optional[str] = None,
                 retry_base_delay: float = 2.0):
        """
        Args:
            api_key: Groq API key; falls back to GROQ_API_KEY
            metrics_file: Optional JSON file the request metrics are mirrored to
            retry_base_delay: Base of the exponential backoff between retries

        Raises:
            ConfigurationError: No API key available
        """
        api_key = api_key or os.getenv('GROQ_API_KEY')
        if not api_key:
            raise ConfigurationError("No Groq API key: set GROQ_API_KEY or pass api_key")

        self.client = Groq(api_key=api_key)
        self.metrics_file = metrics_file
        if metrics_file:
            Path(metrics_file).parent.mkdir(parents=True, exist_ok=True)
        self.retry_base_delay = retry_base_delay
        self.metrics = self._load_metrics()

    def _load_metrics(self) -> Dict:
        metrics = _empty_metrics()
        if not self.metrics_file:
            return metrics
        try:
            with open(self.metrics_file, 'r') as f:
                metrics.update(json.load(f))
        except FileNotFoundError:
            pass
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable Groq metrics file {self.metrics_file}: {e}")
        return metrics

    def _save_metrics(self):
        if not self.metrics_file:
            return
        try:
            with open(self.metrics_file, 'w') as f:
                json.dump(self.metrics, f, indent=2)
        except OSError as e:
            logger.warning(f"Could not save Groq metrics: {e}")

    async def process_with_retry(self,
                                 messages: List[Dict],
                                 model: str = "llama-3.3-70b-versatile",
                                 max_retries: int = 3,
                                 **kwargs):
        """
        Run a chat completion, retrying failed attempts.

        Args:
            messages: Chat messages
            model: Groq model name
            max_retries: Total number of attempts
            **kwargs: Extra completion parameters (temperature,
                max_completion_tokens, response_format, ...)

        Returns:
            The SDK completion response

        Raises:
            TransportError: Every attempt failed
        """
        request = {
            'model': model,
            'messages': messages,
            'temperature': kwargs.pop('temperature', 0.3),
            'max_completion_tokens': kwargs.pop('max_completion_tokens', 1024),
            **kwargs
        }

        for attempt in range(1, max(max_retries, 1) + 1):
            started = datetime.now()
            try:
                response = await asyncio.to_thread(self.client.chat.completions.create, **request)
            except Exception as e:
                self.record_error(str(e))
                if attempt >= max_retries:
                    raise TransportError(f"Groq request failed after {max_retries} attempts: {str(e)}") from e
                delay = self.retry_base_delay ** attempt
                logger.warning(f"Groq attempt {attempt}/{max_retries} failed, retrying in {delay:g}s: {str(e)}")
                await asyncio.sleep(delay)
                continue

            self.record_success((datetime.now() - started).total_seconds())
            return response

    async def complete_text(self, messages: List[Dict], model: str, **kwargs) -> str:
        """Text of the first choice, stripped."""
        response = await self.process_with_retry(messages=messages, model=model, **kwargs)
        return (response.choices[0].message.content or "").strip()

    def record_success(self, duration: float):
        self.metrics['requests'] += 1
        self.metrics['successes'] += 1
        successes = self.metrics['successes']
        # Running mean over successful requests only
        self.metrics['avg_response_time'] += (duration - self.metrics['avg_response_time']) / successes
        self._save_metrics()

    def record_error(self, error_message: str):
        self.metrics['requests'] += 1
        self.metrics['failures'] += 1
        failures = self.metrics['recent_failures']
        failures.append({'timestamp': datetime.now().isoformat(), 'error': error_message})
        del failures[:-MAX_RECORDED_FAILURES]
        self._save_metrics()

    def get_performance_metrics(self) -> Dict:
        """Request counts, success rate (percent) and mean response time (seconds)."""
        requests = self.metrics['requests']
        return {
            'total_requests': requests,
            'success_rate': (self.metrics['successes'] / requests * 100) if requests else 100.0,
            'avg_response_time': self.metrics['avg_response_time']
        }
