"""
Prompt templates for recommendations and the homepage feed.

Placeholders are substituted with str.replace so the JSON examples can keep
their literal braces.
"""

# Marker that mode-specific sections are inserted in front of
OUTPUT_FORMAT_MARKER = "CRITICAL - OUTPUT FORMAT:"

BASE_PROMPT = """Analyze the reading patterns in these books the user loved: {user_book_list}

TASK:
1. Identify the shared tropes, themes, pacing and emotional needs across these books.
2. Recommend 5-7 books that satisfy the same reader needs.
3. Do NOT recommend any of the input books or other books in the same series.
4. Mix well-known titles with lesser-known gems.

CRITICAL - OUTPUT FORMAT:
Return a single JSON object with exactly these top-level keys:
{
  "analysis": {
    "shared_tropes": ["trope1", "trope2"],
    "shared_themes": ["theme1", "theme2"],
    "reader_profile": "2-3 sentence description of what this reader enjoys"
  },
  "recommendations": [
    {
      "title": "Book Title",
      "author": "Author Name",
      "tropes": ["trope1", "trope2"],
      "themes": ["theme1", "theme2"],
      "microthemes": ["micro1", "micro2"],
      "mood": ["mood1", "mood2"],
      "character_archetypes": ["archetype1", "archetype2"],
      "content_warnings": ["warning1"],
      "relationship_dynamics": {
        "romantic": "description",
        "platonic": "description",
        "familial": "description",
        "rivalries": "description"
      },
      "pacing": "e.g., Fast-paced",
      "reader_need": "e.g., Escapism",
      "perfect_for": "Who this book is perfect for (1 sentence)",
      "quote": "A short, memorable quote from the book, or null",
      "match_reasoning": "Why this fits the patterns in the user's books",
      "confidence_score": 0.95
    }
  ],
  "intro_text": "A brief, friendly opening sentence acknowledging their taste."
}

Output ONLY valid JSON starting with {. No text before or after."""

CONTEXT_SECTION = """

ADDITIONAL USER CONTEXT:
The user has provided the following preferences:

{context_input}

Please incorporate these preferences into your analysis and recommendations.
Prioritize books that align with both the input book patterns AND these stated preferences.
"""

INTERVIEW_SECTION = """

DETAILED USER PREFERENCES (from interview):

{interview_context}

These preferences were gathered through an adaptive interview and should be the PRIMARY
driver of recommendations. Use input books as secondary context for genre/style preferences.

When making recommendations:
1. Prioritize alignment with stated preferences
2. Use input books to understand reading history
3. Ensure recommendations respect content preferences mentioned
4. Explain how each recommendation aligns with specific interview insights
"""

INTERVIEW_ONLY_PROMPT = """TASK: Based solely on the user's interview responses, recommend 4-6 books that match their preferences.

USER PREFERENCES (from interview):
{interview_context}

CRITICAL - OUTPUT FORMAT:
You MUST return EXACTLY this structure. Do NOT return analysis fields at the top level.

{
  "analysis": {
    "reader_profile": "2-3 sentence description of what this reader enjoys and seeks in books based on the interview"
  },
  "recommendations": [
    {
      "title": "recommended book 1 title",
      "author": "author name",
      "tropes": ["trope1", "trope2"],
      "themes": ["theme1", "theme2"],
      "microthemes": ["micro1", "micro2"],
      "relationship_dynamics": {
        "romantic": "description",
        "platonic": "description",
        "familial": "description",
        "rivalries": "description"
      },
      "pacing": "e.g., Fast-paced",
      "reader_need": "e.g., Escapism",
      "match_reasoning": "Detailed explanation of how this book aligns with the interview responses",
      "confidence_score": 0.95
    }
  ]
}

Your response MUST have these TWO top-level keys ONLY:
1. "analysis" - an OBJECT containing reader_profile
2. "recommendations" - an ARRAY of 4-6 book objects

Output ONLY valid JSON starting with {. No text before or after.
Base recommendations entirely on interview preferences."""

HOMEPAGE_FEED_PROMPT = """Generate a curated list of book recommendations for a homepage feed based on the following genres: {genres}.
If genres are "General" or empty, provide a diverse mix of popular genres.

Output a JSON object with the following sections:
1. "new_releases": 5 recently published books (last 6 months) in these genres.
2. "popular": 5 highly rated/popular books currently trending in these genres.
3. "award_winning": 5 books that have won major awards (Hugo, Nebula, Pulitzer, Booker, etc.) in these genres.
4. "hidden_gems": 5 highly rated but less known books in these genres.

REQUIRED JSON OUTPUT FORMAT:
{
  "new_releases": [
    { "title": "Title", "author": "Author", "genre": "Genre" }
  ],
  "popular": [
    { "title": "Title", "author": "Author", "genre": "Genre" }
  ],
  "award_winning": [
    { "title": "Title", "author": "Author", "genre": "Genre" }
  ],
  "hidden_gems": [
    { "title": "Title", "author": "Author", "genre": "Genre" }
  ]
}
Return ONLY valid JSON. No markdown, no intro/outro text."""

HOMEPAGE_NEWS_PROMPT = """Find 5 recent, interesting news articles, blog posts, or author interviews related to books, reading, or publishing.
Focus on:
- Upcoming highly anticipated releases
- Author interviews or profiles
- Literary prize announcements
- Trends in the book world

REQUIRED JSON OUTPUT FORMAT:
{
  "news": [
    {
      "title": "Headline",
      "summary": "Brief 1-sentence summary",
      "url": "Link to article (if available, otherwise null)",
      "source": "Source Name (e.g. NYT, Guardian, Tor.com)",
      "date": "Date string (e.g. 'Oct 12, 2023')"
    }
  ]
}
Return ONLY valid JSON. No markdown."""
