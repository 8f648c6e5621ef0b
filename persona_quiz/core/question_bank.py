from persona_quiz.core.models import Choice, Dimension, QuizItemTemplate

# (dimension, prompt, first choice, second choice); the first choice always
# scores the dimension's first letter.
BASE_QUESTIONS = [
    # E vs I
    (Dimension.EI, "After work or school, you usually prefer to:",
     "Go out with friends/colleagues to chat and relax.",
     "Stay home or in a quiet place to recharge alone."),
    (Dimension.EI, "In a gathering with strangers, you usually:",
     "Start chatting and meeting new people quickly.",
     "Observe first and only talk to a few familiar people."),
    (Dimension.EI, "When an idea comes to mind, you usually:",
     "Say it out loud to organize your thoughts while speaking.",
     "Think it through in your head before speaking."),
    (Dimension.EI, "After finishing a project or exam, you prefer to:",
     "Celebrate and share the process/result with others.",
     "Reflect on the process alone and digest it."),
    (Dimension.EI, "In team discussions, you usually:",
     "Speak up naturally and maybe even drive the atmosphere.",
     "Listen more and speak only when necessary."),
    (Dimension.EI, "When you haven't socialized for a long time, you feel:",
     "A bit trapped and really want to go out and interact.",
     "Fine, or even quite comfortable."),
    (Dimension.EI, "In workshops or classes, you enjoy:",
     "Group discussions and interactive games.",
     "The lecture content and taking your own notes."),
    (Dimension.EI, "For you, 'recharging' is more like:",
     "Being in a lively environment with company.",
     "Being in a quiet space with your own room."),
    # S vs N
    (Dimension.SN, "Facing a new project, you first focus on:",
     "Concrete data, current status, and actual constraints.",
     "Future possibilities and new ideas."),
    (Dimension.SN, "When learning, you remember better:",
     "Practical examples, steps, and details.",
     "Overall concepts, principles, and underlying ideas."),
    (Dimension.SN, "When someone describes a plan, you care more about:",
     "The actual steps, process, and timeline.",
     "The vision, impact, and long-term possibilities."),
    (Dimension.SN, "When solving problems, you usually:",
     "Break it down and follow experience step by step.",
     "Look at it from different angles and think outside the box."),
    (Dimension.SN, "In daily conversation, you talk more about:",
     "Concrete facts and things that happened.",
     "Hypotheticals, inspirations, and 'what if'."),
    (Dimension.SN, "When watching movies or reading, you care more about:",
     "Whether the plot is logical and details are clear.",
     "The themes, symbolism, and metaphors."),
    (Dimension.SN, "In work or study, you prefer:",
     "Standard procedures and clearly defined tasks.",
     "Creating new methods and trying different approaches."),
    (Dimension.SN, "When someone says 'this feels better', you usually:",
     "Ask: 'Is there data or actual examples to support that?'",
     "Are willing to try it, because intuition is often right."),
    # T vs F
    (Dimension.TF, "When making important decisions (e.g., changing jobs), you value:",
     "Analysis of conditions: salary, growth, risks, pros/cons.",
     "Feelings of yourself and others: do I like it, does it fit values."),
    (Dimension.TF, "When a colleague/classmate performs poorly, you tend to:",
     "Point out the problem directly and give specific advice.",
     "Consider their feelings first and mention it gently later."),
    (Dimension.TF, "In discussions, you naturally focus on:",
     "Whether the logic is sound and conclusions are reasonable.",
     "Whether everyone feels respected and the atmosphere is harmonious."),
    (Dimension.TF, "When you disagree with someone, you usually:",
     "State reasons and arguments; whoever makes sense wins.",
     "Consider how to say it without hurting feelings or the relationship."),
    (Dimension.TF, "You are happier when praised for being:",
     "Rational and having good judgment.",
     "Warm and understanding of others."),
    (Dimension.TF, "When you have to reject someone, you:",
     "Follow principles and facts, even if it's uncomfortable.",
     "Spend time considering their situation and feelings."),
    (Dimension.TF, "When someone vents to you, you usually:",
     "Analyze the problem and offer solutions quickly.",
     "Listen and empathize with their emotions first."),
    # J vs P
    (Dimension.JP, "When planning a trip, you prefer to:",
     "Plan itinerary, time, and budget in advance.",
     "Know the general direction and adjust as you go."),
    (Dimension.JP, "Facing a deadline, you usually:",
     "Allocate time early and finish ahead or on time.",
     "Often finish in a burst of energy near the deadline."),
    (Dimension.JP, "How do you feel about sudden changes?",
     "Disrupted; I want to reorganize things immediately.",
     "Fine; I might even enjoy the improvisation."),
    (Dimension.JP, "Your desktop/files/schedule are usually:",
     "Organized, systematic, and ruled.",
     "Flexible; as long as I can find things, it's fine."),
    (Dimension.JP, "When making decisions, you tend to:",
     "Decide quickly; settling things feels good.",
     "Keep options open; I don't like locking things down."),
    (Dimension.JP, "With long-term goals (e.g., learning a skill), you:",
     "Set milestones and a schedule, following steps.",
     "Go with the flow of interest and adjust pace flexibly."),
    (Dimension.JP, "Your ideal day is:",
     "Planned out with few changes.",
     "Open with plenty of free time for spontaneity."),
]

TYPE_NAMES = {
    "INTJ": "The Architect",
    "INTP": "The Thinker",
    "ENTJ": "The Commander",
    "ENTP": "The Debater",
    "INFJ": "The Advocate",
    "INFP": "The Mediator",
    "ENFJ": "The Protagonist",
    "ENFP": "The Campaigner",
    "ISTJ": "The Logistician",
    "ISFJ": "The Defender",
    "ESTJ": "The Executive",
    "ESFJ": "The Consul",
    "ISTP": "The Virtuoso",
    "ISFP": "The Adventurer",
    "ESTP": "The Entrepreneur",
    "ESFP": "The Entertainer",
}


def load_templates() -> list[QuizItemTemplate]:
    templates = []
    for i, (dimension, prompt, first, second) in enumerate(BASE_QUESTIONS, 1):
        first_letter, second_letter = dimension.letters
        templates.append(
            QuizItemTemplate(
                id=i,
                dimension=dimension,
                prompt_text=prompt,
                choice_a=Choice(text=first, value=first_letter),
                choice_b=Choice(text=second, value=second_letter),
            )
        )
    return templates


def type_name(code: str) -> str:
    return TYPE_NAMES.get(code.upper(), "")
