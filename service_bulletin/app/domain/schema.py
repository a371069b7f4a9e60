"""
Row store schema and demo data.
"""

from shared.logging import get_logger
from ..adapters.store import SQLiteStore

logger = get_logger("bulletin.schema")


SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY,
    text TEXT NOT NULL CHECK (length(trim(text)) > 0)
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS posts (
    id INTEGER PRIMARY KEY,
    image_url TEXT,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    user_id INTEGER NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS likes (
    user_id INTEGER NOT NULL,
    post_id INTEGER NOT NULL,
    PRIMARY KEY (user_id, post_id),
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
    FOREIGN KEY (post_id) REFERENCES posts (id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS news (
    id INTEGER PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    date TEXT NOT NULL,
    image TEXT
);

CREATE TABLE IF NOT EXISTS meals (
    id INTEGER PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL,
    image TEXT,
    summary TEXT NOT NULL,
    instructions TEXT NOT NULL,
    creator TEXT NOT NULL,
    creator_email TEXT NOT NULL
);
"""


DEMO_DATA = """
INSERT OR IGNORE INTO users (id, first_name, last_name, email) VALUES
    (1, 'John', 'Doe', 'john@example.com'),
    (2, 'Max', 'Schwarz', 'max@example.com');

INSERT OR IGNORE INTO posts (id, image_url, title, content, created_at, user_id) VALUES
    (1, '/images/hiking.jpg', 'A day on the ridge', 'Six hours, two summits, one very tired dog.', '2024-05-02 09:30:00', 1),
    (2, '/images/bread.jpg', 'Sourdough, attempt nine', 'Finally an open crumb.', '2024-05-10 18:05:00', 1),
    (3, '/images/desk.jpg', 'New desk setup', 'Standing desk, at last.', '2024-06-01 12:00:00', 2);

INSERT OR IGNORE INTO likes (user_id, post_id) VALUES
    (1, 3),
    (2, 1);

INSERT OR IGNORE INTO news (id, slug, title, content, date, image) VALUES
    (1, 'will-ai-replace-humans', 'Will AI Replace Humans?', 'Experts disagree, loudly.', '2021-07-01', 'ai-robot.jpg'),
    (2, 'beaver-plague', 'A Plague of Beavers', 'Dams are appearing in unlikely places.', '2022-05-01', 'beaver.jpg'),
    (3, 'couple-cooking', 'Spend more time together!', 'Cooking together helps, a survey says.', '2024-03-01', 'couple-cooking.jpg'),
    (4, 'hiking', 'Hiking is the best!', 'Fresh air, sore legs.', '2024-05-01', 'hiking.jpg'),
    (5, 'landscape', 'The Beauty of Landscape', 'Why painters keep returning outdoors.', '2024-05-20', 'landscape.jpg');

INSERT OR IGNORE INTO meals (id, slug, title, image, summary, instructions, creator, creator_email) VALUES
    (1, 'juicy-cheese-burger', 'Juicy Cheese Burger', '/images/burger.jpg', 'A mouth-watering burger with a juicy beef patty and melted cheese.', 'Prepare the patty. Cook it. Assemble the burger.', 'John Doe', 'john@example.com'),
    (2, 'spicy-curry', 'Spicy Curry', '/images/curry.jpg', 'A rich and spicy curry with exotic spices and creamy coconut milk.', 'Chop the vegetables. Simmer with spices. Serve with rice.', 'Max Schwarz', 'max@example.com');
"""


async def init_store(store: SQLiteStore, seed: bool = True) -> None:
    """Create tables and optionally load demo rows."""
    await store.executescript(SCHEMA)
    if seed:
        await store.executescript(DEMO_DATA)
    logger.info("Initialized row store schema", seeded=seed)
