from .evaluator import build_query, evaluate_query
from .lexer import Lexer, Token, TokenKind, extract_tag_dependencies
from .parser import Atom, AtomKind, Cons, Op, TokenTree, parse_query

__all__ = ['Atom', 'AtomKind', 'Cons', 'Lexer', 'Op', 'Token', 'TokenKind', 'TokenTree',
           'build_query', 'evaluate_query', 'extract_tag_dependencies', 'parse_query']
