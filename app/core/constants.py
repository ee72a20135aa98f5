PRODUCT_CACHE_PREFIX = "product:"
COMPRESSED_SUFFIX = "_compressed.jpg"
COMPRESSED_CONTENT_TYPE = "image/jpeg"

# Characters that are not safe in object keys
UNSAFE_KEY_CHARS = ("?", "&", "=", "%", " ")

ATTEMPT_HEADER = "x-attempt"
FAILURE_HEADER = "x-failure"
