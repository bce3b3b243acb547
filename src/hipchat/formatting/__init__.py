"""Rich-text helpers for message bodies."""

from hipchat.formatting.attachments import extract_attachments, render_image_tags

__all__ = ["extract_attachments", "render_image_tags"]
