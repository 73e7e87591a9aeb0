"""Prompt templates sent to the content classifier.

Placeholders are filled with ``str.replace`` rather than ``str.format`` so
that the literal JSON braces in the output formats need no escaping.
"""

NO_PROJECTS = "(no existing projects)"

PROJECT_CLASSIFY_PROMPT = """You are the assistant of my personal knowledge system and sort notes by project.
Read the note below and decide where it belongs.

## Existing projects
{projects}

## Note
{content}

## Rules
1. Related to an existing project -> classify into that project
2. Looks like a new project -> propose a new project name
3. General reference material outside any project -> library
4. Finished or no longer needed -> archive

## Output format (JSON)
{
  "targetType": "project or library or archive",
  "projectName": "project name (only when targetType is project)",
  "isNewProject": true/false,
  "title": "note title",
  "summary": "2-3 sentence summary",
  "nextAction": "next action or null"
}
"""

ZK_EXTRACT_PROMPT = """You write permanent notes in the Zettelkasten style.
Extract candidate ideas for permanent notes from the note below.

## Rules
- One idea per note (atomic note)
- Explain each idea in 3-5 sentences
- State in one line why the idea matters
- Suggest 2-3 concepts the idea could connect to
- List related keywords for each idea

## Note
{content}

## Output format (JSON array)
[
  {
    "title": "A one-sentence title describing the idea",
    "body": "3-5 sentence explanation",
    "importance": "Why does this idea matter? (1 line)",
    "relatedConcepts": ["concept1", "concept2", "concept3"],
    "keywords": ["keyword1", "keyword2", "keyword3"]
  }
]

Return an empty array [] if there are no ideas.
"""

KEYWORD_EXTRACT_PROMPT = """Analyze the note and extract 5-10 core keywords.

## Rules
- Prefer technical terms, project names and key concepts
- Skip overly generic words (e.g. method, content, information)
- Keep compound nouns intact

## Note
{content}

## Output format (JSON array only)
["keyword1", "keyword2", "keyword3", ...]
"""

RELATED_NOTES_PROMPT = """Rate how related the new note is to each existing candidate note.

## New note
Title: {title}
Keywords: {keywords}

## Candidate notes
{candidates}

## Rules
- Give each candidate a relevance score (0.0-1.0)
- Return only notes scoring 0.5 or higher
- Return at most 5 notes
- Sort by relevance, highest first
- Explain in one line why each connection exists
- Classify the connection: expansion|rebuttal|example|premise|application

## Output format (JSON array only)
[
  {
    "index": 0,
    "relevance": 0.8,
    "reason": "concrete reason the notes are related",
    "type": "expansion"
  }
]
"""

PROJECT_DETECT_PROMPT = """Decide which project the new note relates to.

## New note
Title: {title}
Keywords: {keywords}

## Existing projects
{projects}

## Rules
- Pick the single most related project from the title and keywords
- Answer "None" if no project is related
- Answer "None" if you are unsure
- If it looks like a new project, answer "NEW: project name"

## Output format (project name only)
project name, or None, or NEW: new project name
"""

SMART_SPLIT_PROMPT = """You split memos into separate notes by project or topic.
One memo may mix several topics or projects. Split them into standalone notes.

## Existing projects (for reference)
{projects}

## Memo
{content}

## Rules
- Different projects or topics must be split apart
- A one-line memo is worth splitting if it carries meaning
- Keep related content together (do not over-split)
- Give each section a fitting title
- Decide the targetType:
  - project: content about a specific project
  - library: general reference material outside any project
  - archive: finished or no longer needed
- Put the project name in projectName when it matches an existing project
- For a new project set isNewProject: true and put the new name in projectName
- Extract 3-5 keywords
- isAtomic: true for a single idea, false for mixed content

## Output format (JSON array)
[
  {
    "title": "title of the section",
    "content": "the original text of the section (verbatim)",
    "targetType": "project",
    "projectName": "Smart farm",
    "isNewProject": false,
    "keywords": ["sensor", "data", "IoT"],
    "isAtomic": false
  }
]

If there is nothing to split, return the whole memo as a single section.
"""

ZK_INDEX_TOPIC_PROMPT = """Describe the structure of the Zettelkasten notes that belong to one topic.

## Topic
{topic}

## Notes
{notes}

## Rules
- Describe the topic in 1-2 lines
- Give the role of each note (foundation, advanced, application, example)
- Mark relations between notes (develops, builds-on, related)
- Suggest 2-3 related topics

## Output format (JSON)
{
  "description": "1-2 line description of the topic",
  "notes": [
    {
      "title": "note title",
      "role": "foundation",
      "relations": [{"target": "other note title", "type": "develops"}]
    }
  ],
  "relatedTopics": ["topic1", "topic2"]
}
"""


FOCUS_PROMPT = """You are my work-priority coach.
Look at the projects below and pick only the top 3 I should focus on now.

## Projects
{projects}

## For each project give
- title: the project name
- why: one line on why it matters right now
- next_action: the smallest next step I can take today

## Output format (JSON array)
[
  {
    "title": "project name",
    "why": "why it matters",
    "next_action": "next step"
  }
]
"""


def fill(template: str, **values: str) -> str:
    """Substitute ``{name}`` placeholders in a prompt template."""
    prompt = template
    for name, value in values.items():
        prompt = prompt.replace("{" + name + "}", value)
    return prompt


def numbered(items) -> str:
    """Render ``1. a`` / ``2. b`` lines, or the no-projects marker."""
    items = list(items)
    if not items:
        return NO_PROJECTS
    return "\n".join(f"{i + 1}. {item}" for i, item in enumerate(items))
