from .generator import (
    ContentGenerationError,
    ContentGenerator,
    GeneratedContent,
    OpenAICompatibleGenerator,
    TemplateContentGenerator,
    create_generator,
)

__all__ = [
    "ContentGenerationError",
    "ContentGenerator",
    "GeneratedContent",
    "OpenAICompatibleGenerator",
    "TemplateContentGenerator",
    "create_generator",
]
