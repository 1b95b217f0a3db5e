"""Embedded quotes that are always available, even fully offline."""

from typing import List

from quote_formats import Quote

FALLBACK_SOURCE = "Local"

HARD_FALLBACK_QUOTE = Quote(
    id="local-fallback-1",
    text="Keep going. One step at a time.",
    author="Local",
    category="general",
    source=FALLBACK_SOURCE,
)

# (text, author, category)
_RAW_FALLBACK_QUOTES = (
    ("The secret of getting ahead is getting started.", "Mark Twain", "motivation"),
    ("It always seems impossible until it's done.", "Nelson Mandela", "motivation"),
    ("Well done is better than well said.", "Benjamin Franklin", "productivity"),
    ("Energy and persistence conquer all things.", "Benjamin Franklin", "success"),
    ("The journey of a thousand miles begins with one step.", "Lao Tzu", "motivation"),
    ("We are what we repeatedly do. Excellence, then, is not an act, but a habit.", "Will Durant", "productivity"),
    ("You must be the change you wish to see in the world.", "Mahatma Gandhi", "leadership"),
    ("Whether you think you can or you think you can't, you're right.", "Henry Ford", "motivation"),
    ("Quality is not an act, it is a habit.", "Aristotle", "productivity"),
    ("Waste no more time arguing what a good man should be. Be one.", "Marcus Aurelius", "wisdom"),
    ("The impediment to action advances action. What stands in the way becomes the way.", "Marcus Aurelius", "wisdom"),
    ("Luck is what happens when preparation meets opportunity.", "Seneca", "success"),
    ("It is not that we have a short time to live, but that we waste a lot of it.", "Seneca", "productivity"),
    ("No man is free who is not master of himself.", "Epictetus", "wisdom"),
    ("First say to yourself what you would be; and then do what you have to do.", "Epictetus", "motivation"),
    ("Do what you can, with what you have, where you are.", "Theodore Roosevelt", "motivation"),
    ("Believe you can and you're halfway there.", "Theodore Roosevelt", "motivation"),
    ("A leader is one who knows the way, goes the way, and shows the way.", "John C. Maxwell", "leadership"),
    ("Success is not final, failure is not fatal: it is the courage to continue that counts.", "Winston Churchill", "success"),
    ("If you want to lift yourself up, lift up someone else.", "Booker T. Washington", "leadership"),
    ("Act as if what you do makes a difference. It does.", "William James", "motivation"),
    ("Nothing will work unless you do.", "Maya Angelou", "productivity"),
    ("The only way to do great work is to love what you do.", "Steve Jobs", "success"),
    ("Simplicity is the ultimate sophistication.", "Leonardo da Vinci", "wisdom"),
    ("Knowing is not enough; we must apply. Willing is not enough; we must do.", "Johann Wolfgang von Goethe", "productivity"),
    ("He who has a why to live can bear almost any how.", "Friedrich Nietzsche", "wisdom"),
    ("Fall seven times, stand up eight.", "Japanese Proverb", "motivation"),
    ("The best time to plant a tree was 20 years ago. The second best time is now.", "Chinese Proverb", "motivation"),
    ("Little by little, one travels far.", "J.R.R. Tolkien", "motivation"),
    ("What we think, we become.", "Buddha", "wisdom"),
)

FALLBACK_QUOTES: List[Quote] = [
    Quote(
        id=f"local-{index}",
        text=text,
        author=author,
        category=category,
        tags=(category,),
        source=FALLBACK_SOURCE,
    )
    for index, (text, author, category) in enumerate(_RAW_FALLBACK_QUOTES, start=1)
]
