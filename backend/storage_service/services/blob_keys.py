"""Deterministic blob keys: {category}/{directory}/{file_name}{original extension}."""

_DIRECTORIES = {
    "video": "videos",
    "image": "images",
    "audio": "audios",
}
OTHER_DIRECTORY = "other"


def classify(content_type: str | None) -> str:
    """Directory for a MIME type's top-level token; unknown or missing -> 'other'."""
    if not content_type:
        return OTHER_DIRECTORY
    return _DIRECTORIES.get(content_type.split("/")[0], OTHER_DIRECTORY)


def extension_of(original_file_name: str | None) -> str:
    """Final suffix with the dot, case preserved ('pic.PNG' -> '.PNG'); '' when there is none."""
    if not original_file_name:
        return ""
    base = original_file_name.replace("\\", "/").rsplit("/", 1)[-1]
    dot = base.rfind(".")
    # A trailing dot is not an extension
    if dot < 0 or dot == len(base) - 1:
        return ""
    return base[dot:]


def build_key(
    category: str,
    content_type: str | None,
    file_name: str,
    original_file_name: str | None,
) -> str:
    return f"{category}/{classify(content_type)}/{file_name}{extension_of(original_file_name)}"
