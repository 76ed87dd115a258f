import re

def slugify(text: str) -> str:
    text = text.lower().strip()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text)
    return re.sub(r"^-+|-+$", "", text)

def generate_unique_slug(title: str, product_id: str) -> str:
    """Slug from the title, made unique with the first 8 characters of the id"""
    return f"{slugify(title)}-{product_id[:8]}"
