# config/analyzer_config.py

CLASSIFIER_CONFIG = {
    "classifier": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.2,
            "max_tokens": 1000,
            "retry_count": 3
        },
        "content_processing": {
            "max_body_chars": 4000
        }
    },
    "thread_summarizer": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.3,
            "max_tokens": 300,
            "retry_count": 3
        },
        # Each message body is cut to this many characters before summarizing
        "max_message_chars": 500
    },
    "crm_assistant": {
        "model": {
            "name": "llama-3.3-70b-versatile",
            "temperature": 0.3,
            "max_tokens": 1500,
            "retry_count": 3
        },
        "max_records_in_context": 200
    }
}
