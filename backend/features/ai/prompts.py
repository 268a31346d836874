"""Prompt templates for the writing assistant.

Kept here so the service only fills in post fields.
"""

SYSTEM_PROMPT = (
    "You are an editorial assistant for a blogging platform. You give concise, "
    "concrete suggestions and never invent facts about the author."
)

TITLES_PROMPT = (
    "Generate 4 engaging blog titles for a {category} article about: {title}. "
    "Make them SEO-friendly and clickable. One title per line."
)

IMPROVEMENTS_PROMPT = (
    "Analyze this blog content and provide 3 specific improvement suggestions, "
    "one per line: {content}"
)

TAGS_PROMPT = (
    "Generate 8 relevant SEO tags for a {category} blog post about: {title}. "
    "Return them comma-separated."
)

GENERATE_PROMPT = (
    "Write a {word_count}-word blog post with a {tone} tone about: {prompt}. "
    "Include an engaging introduction, well-structured body paragraphs, and a "
    "compelling conclusion. Use markdown formatting for headers and emphasis."
)

SEO_PROMPT = (
    "Analyze this blog post for SEO optimization:\n"
    "Title: {title}\n"
    "Content: {content}\n"
    "Target Keywords: {keywords}\n\n"
    "Provide specific SEO recommendations including:\n"
    "1. Title optimization\n"
    "2. Meta description suggestion\n"
    "3. Header structure improvements\n"
    "4. Keyword density analysis\n"
    "5. Content improvements"
)
