from exam_bot.parser import TEMPLATE, ParsedQuestion, parse_questions, serialize_questions

SAMPLE = """1. What is 2+2?
A. 3
B. 4
C. 5
D. 6
Ans: B
Explain: Basic addition

2. Capital of France?
A. London
B. Paris
C. Berlin
Ans: B
Explain: Paris is the capital
"""


def test_parses_well_formed_blocks():
    questions = list(parse_questions(SAMPLE))

    assert questions == [
        ParsedQuestion("What is 2+2?", ["3", "4", "5", "6"], 1, "Basic addition"),
        ParsedQuestion("Capital of France?", ["London", "Paris", "Berlin"], 1, "Paris is the capital"),
    ]


def test_round_trip_through_serializer():
    questions = [
        ParsedQuestion("Largest planet?", ["Mars", "Jupiter", "Venus"], 1, None),
        ParsedQuestion("Is water wet?", ["Yes", "No"], 0, "Mostly"),
    ]

    assert list(parse_questions(serialize_questions(questions))) == questions


def test_template_is_importable():
    assert len(list(parse_questions(TEMPLATE))) == 2


def test_block_without_answer_is_dropped():
    text = "1. No answer here\nA. x\nB. y\n\n2. Kept\nA. x\nB. y\nAns: a\n"

    questions = list(parse_questions(text))

    assert [q.question_text for q in questions] == ["Kept"]
    assert questions[0].correct_option == 0


def test_block_with_single_option_is_dropped():
    assert list(parse_questions("1. Lonely\nA. only\nAns: A\n")) == []


def test_answer_outside_options_is_ignored():
    assert list(parse_questions("1. Q\nA. x\nB. y\nAns: D\n")) == []


def test_numbered_line_flushes_previous_block_without_blank_line():
    text = "1. First\nA. a\nB. b\nAns: B\n2. Second\nA. c\nB. d\nC. e\nAns: C\n"

    questions = list(parse_questions(text))

    assert [(q.question_text, q.correct_option) for q in questions] == [("First", 1), ("Second", 2)]


def test_option_letters_are_not_interpreted():
    questions = list(parse_questions("1. Order\nC. first\nA. second\nAns: B\n"))

    assert questions[0].options == ["first", "second"]
    assert questions[0].correct_option == 1


def test_whitespace_and_case_are_tolerated():
    text = "   1. Spaced   \n  A. one \n  B. two\n  ANS: b\n  explain: because  \n"

    (question,) = parse_questions(text)

    assert question.question_text == "Spaced"
    assert question.options == ["one", "two"]
    assert question.correct_option == 1
    assert question.explanation == "because"


def test_garbage_never_raises():
    text = "hello\n\n\nAns: A\nExplain: x\nZ. stray option\n1.missing space\n"

    assert list(parse_questions(text)) == []


def test_parser_is_a_one_shot_iterator():
    parsed = parse_questions(SAMPLE)

    assert len(list(parsed)) == 2
    assert list(parsed) == []
