"""Utils 模块"""
from .word_count import count_story_words, count_words_detail

__all__ = ['count_story_words', 'count_words_detail']
