"""
Pressline - Bilingual content pipeline orchestrator

This package drives the production of Hebrew/English articles:
1. Select a topic and generate a long-form Hebrew article
2. Create a WordPress draft with a featured image and explainer video
3. Wait for a human reviewer to approve the draft
4. Publish the Hebrew post, then the English translation and social posts

Separate pipelines audit and enhance SEO and turn articles into podcast
episodes. A data auto-healer re-drives the single missing stage for records
left inconsistent by an earlier failed run.
"""

__version__ = "0.1.0"
__author__ = "Pressline Team"
