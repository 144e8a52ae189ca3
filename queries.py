"""
Product search queries for benchmarking, grouped by search type
"""

QUERIES = {
    "fulltext": [
        "wireless headphones",
        "apple iphone",
        "samsung galaxy",
        "laptop computer",
        "digital camera",
        "bluetooth speaker",
        "gaming mouse",
        "mechanical keyboard",
        "smart watch",
        "4k monitor",
        "coffee maker",
        "air fryer"
    ],
    "boolean": [
        "laptop AND gaming",
        "phone OR tablet",
        "camera NOT digital",
        "wireless AND (headphones OR earbuds)",
        "apple OR microsoft OR google",
        "laptop AND (dell OR hp OR lenovo)",
        "gaming AND keyboard AND mechanical",
        "speaker AND bluetooth AND waterproof"
    ],
    "field": [
        "title:iphone",
        "brand:samsung",
        "title:laptop",
        "brand:apple",
        "description:wireless",
        "title:camera",
        "brand:sony",
        "title:headphones",
        "description:gaming",
        "brand:microsoft"
    ],
    "fuzzy": [
        "samsu",
        "iphon",
        "wireles heaphones",
        "blutooth speker",
        "mechenical keybord",
        "digtal camra",
        "cofee makr",
        "laptp computr",
        "gamng mous",
        "smart wach"
    ],
    "exact": [
        "wireless headphones",
        "apple iphone",
        "samsung galaxy",
        "digital camera",
        "bluetooth speaker",
        "gaming keyboard",
        "4k monitor",
        "coffee maker",
        "smart watch",
        "air fryer"
    ]
}

# Warmup queries (cache stabilization before measured runs)
WARMUP_QUERY_SET = [
    ("fulltext", "book"),
    ("fulltext", "camera"),
    ("exact", "samsung phone"),
    ("fuzzy", "appel"),
    ("field", "title:kindle")
]
