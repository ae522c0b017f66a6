"""Scripted replies, in the canonical language (Brazilian Portuguese).

Everything here is translated on demand by the localizer, so replies are
written once, in Portuguese, and never hard-coded in other languages.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from secretary.config import CONSULTATION_VALUE, CONTACT_PHONE
from secretary.models import Stage

FRIEND = "amigo(a)"


def _name(first_name: str | None) -> str:
    return first_name or FRIEND


# ── Name capture ─────────────────────────────────────────────────────

def ask_name(doctor_name: str) -> str:
    return (
        f"Olá! Bem-vindo(a) ao consultório de {doctor_name}. Sou a secretária virtual. "
        "Com quem eu falo, por gentileza? 😊"
    )


def ask_name_again() -> str:
    return "Desculpe, não consegui entender seu nome. Pode me dizer só o seu primeiro nome?"


def welcome(first_name: str) -> str:
    return random.choice([
        f"Oi, {first_name}! É um prazer falar com você 😊\n"
        "Pra eu te ajudar da melhor forma, pode me contar o que está te incomodando?",
        f"Oi, {first_name}! Tudo bem? Antes de falarmos de horários, me conta um pouco "
        "do que está acontecendo? Assim consigo te orientar melhor.",
    ])


# ── NEPQ discovery questions ─────────────────────────────────────────

def discovery_question(stage: Stage, first_name: str | None) -> str:
    name = _name(first_name)
    questions = {
        Stage.SITUATION: f"{name}, me conta: o que te fez procurar o consultório hoje?",
        Stage.PROBLEM: (
            f"Entendi, {name}. Há quanto tempo você sente isso? "
            "E nesse tempo tem piorado ou se mantido igual?"
        ),
        Stage.IMPLICATION: (
            f"Nossa, deve ser difícil lidar com isso 😔 E me diga, {name}: "
            "isso já atrapalhou sua rotina, como o sono, o trabalho ou a alimentação?"
        ),
        Stage.PRIOR_TREATMENT: (
            "Compreendo. Você já tentou resolver de alguma forma, "
            "como passar com outro médico ou usar alguma medicação?"
        ),
        Stage.SOLUTION: (
            "Imagino como isso desgasta. Agora vamos pensar no contrário: "
            "se você pudesse se livrar disso, como seria a sua vida? ✨"
        ),
    }
    return questions[stage]


def empty_answer(first_name: str | None) -> str:
    return f"Desculpe, {_name(first_name)}, não entendi. Pode me contar com suas palavras?"


# ── Interrupts (before closing) ──────────────────────────────────────

def price_interrupt(first_name: str | None) -> str:
    return (
        f"Claro, {_name(first_name)}, vamos chegar nessa parte. "
        "Mas antes, para te dar o melhor direcionamento, preciso entender um pouco mais o seu caso."
    )


def insurance_interrupt(first_name: str | None) -> str:
    return (
        f"Entendo a pergunta sobre o convênio, {_name(first_name)}, e já vamos falar disso. "
        "Antes, quero entender direitinho o que você está sentindo."
    )


# ── Closing ──────────────────────────────────────────────────────────

def closing_template(first_name: str | None, doctor_name: str, problem: str | None) -> str:
    """Deterministic six-paragraph pitch used when the LLM pitch is unusable."""
    name = _name(first_name)
    problem = problem or "esse incômodo"
    paragraphs = [
        f"{name}, obrigado por dividir tudo isso comigo. Conviver com {problem} "
        "e ver a rotina sendo afetada não é fácil.",
        f"Muitos pacientes chegaram até {doctor_name} com uma história parecida "
        "e hoje contam que, pela primeira vez, alguém investigou a fundo a causa do problema.",
        "Na primeira consulta o foco é entender você por completo, chegar a um diagnóstico "
        "claro e montar um plano feito para o seu caso.",
        f"O atendimento é particular e a consulta custa R$ {CONSULTATION_VALUE}. "
        "Fornecemos recibo para você pedir reembolso ao seu plano, se quiser.",
        "Sei que tempo e investimento pesam na decisão, mas continuar tentando o mesmo "
        "caminho costuma custar mais caro do que resolver de vez.",
        "Qual seria o melhor dia e período (manhã ou tarde) para a sua consulta?",
    ]
    return "\n\n".join(paragraphs)


def ask_scheduling_preference(first_name: str | None) -> str:
    return (
        f"Ótimo, {_name(first_name)}! Fico feliz em te ajudar a dar esse passo. "
        "Qual seria o melhor dia e período (manhã ou tarde) para você?"
    )


def price_answer(first_name: str | None) -> str:
    return (
        f"{_name(first_name)}, a consulta é particular e custa R$ {CONSULTATION_VALUE}. "
        "Quer que eu veja o melhor dia e período para você?"
    )


def insurance_answer(first_name: str | None) -> str:
    return (
        f"{_name(first_name)}, o atendimento é apenas particular, para garantir tempo e "
        "qualidade na consulta. Fornecemos recibo para reembolso. Vamos agendar?"
    )


def graceful_exit(first_name: str | None) -> str:
    return (
        f"Tudo bem, {_name(first_name)}. Entendo que é uma decisão importante. "
        "Se mudar de ideia, estarei por aqui. Cuide-se!"
    )


def closing_nudge(first_name: str | None) -> str:
    return (
        f"{_name(first_name)}, posso reservar um horário para você? "
        "Me diga o melhor dia e período."
    )


# ── Scheduling ───────────────────────────────────────────────────────

def scheduling_confirmed(first_name: str | None, when: str) -> str:
    return (
        f"Perfeito, {_name(first_name)}! Sua consulta ficou agendada para {when}. "
        "Qualquer imprevisto, é só me avisar por aqui."
    )


def scheduling_registered(first_name: str | None, preference: str) -> str:
    return (
        f"Perfeito, {_name(first_name)}! Registrei sua preferência por {preference}. "
        "Nossa equipe vai confirmar o horário exato com você em instantes."
    )


def scheduling_failed(first_name: str | None) -> str:
    return (
        f"Desculpe, {_name(first_name)}, não consegui acessar a agenda agora. "
        f"Pode tentar novamente em instantes ou ligar para {CONTACT_PHONE}."
    )


def ask_preference_again(first_name: str | None) -> str:
    return (
        f"{_name(first_name)}, me diga um dia (por exemplo, amanhã, segunda ou 25/10) "
        "e o período de sua preferência."
    )


def already_registered(first_name: str | None) -> str:
    return (
        f"{_name(first_name)}, seu pedido de consulta já está registrado. "
        "Se precisar de algo mais, é só falar!"
    )


# ── Guards and errors ────────────────────────────────────────────────

def emergency(first_name: str | None) -> str:
    return (
        f"🚨 {_name(first_name)}, se você está passando por uma emergência médica, NÃO ESPERE.\n\n"
        "Ligue imediatamente para o SAMU (192) ou vá ao pronto-socorro mais próximo.\n\n"
        "Para assuntos não urgentes, retome o contato quando estiver em segurança."
    )


def emergency_reminder() -> str:
    return "Por favor, procure atendimento de emergência agora: SAMU 192 ou o pronto-socorro mais próximo."


def loop_breaker() -> str:
    return (
        "Parece que não estamos nos entendendo por aqui. Que tal conversarmos por telefone? "
        f"Ligue para {CONTACT_PHONE} e resolvemos mais rápido."
    )


def message_too_long(limit: int) -> str:
    return f"Sua mensagem ficou um pouco longa. Pode resumir em até {limit} caracteres?"


def technical_apology(first_name: str | None = None) -> str:
    return (
        f"Desculpe, {_name(first_name)}, estou com uma dificuldade técnica. "
        f"Por favor, ligue para {CONTACT_PHONE}."
    )


def unsupported_message() -> str:
    return "Por enquanto consigo entender apenas mensagens de texto e áudio. Pode escrever para mim?"


def audio_unreadable() -> str:
    return "Não consegui ouvir seu áudio. Pode me mandar a mensagem por escrito?"


# ── Objections ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Objection:
    id: str
    keywords: tuple[str, ...]  # accent-free, lower case
    reply: str


OBJECTIONS: tuple[Objection, ...] = (
    Objection(
        id="insurance",
        keywords=(
            "plano de saude", "convenio", "atende plano", "aceita plano",
            "health insurance", "insurance", "my plan",
        ),
        reply=(
            "Entendi perfeitamente. Muitos dos nossos pacientes também chegaram pensando no plano.\n\n"
            "O que eles contam é que as consultas pelo plano eram rápidas e saíam com mais dúvidas "
            "do que entraram.\n\n"
            "Aqui o médico tem tempo para escutar, investigar a fundo e acompanhar de perto. "
            "E fornecemos recibo para reembolso.\n\n"
            "Quanto tempo mais você quer conviver com esse problema? Prefere de manhã ou à tarde?"
        ),
    ),
    Objection(
        id="partner",
        keywords=(
            "ver com meu marido", "ver com minha esposa", "falar com meu marido",
            "falar com minha esposa", "ver com meu parceiro", "ver com minha parceira",
            "talk to my husband", "talk to my wife", "check with my partner",
        ),
        reply=(
            "Claro, super entendo. É natural querer conversar com quem está do nosso lado.\n\n"
            "O que acontece com frequência é a pessoa adiar e o problema continuar, às vezes piorando.\n\n"
            "Posso fazer uma sugestão? Garanto o horário agora, sem compromisso. "
            "Se decidirem que não é o momento, é só me avisar. Amanhã à tarde fica bom?"
        ),
    ),
    Objection(
        id="price",
        keywords=(
            "caro", "muito caro", "nao tenho dinheiro", "nao consigo pagar",
            "expensive", "too much", "can't afford", "cannot afford",
        ),
        reply=(
            "Muitos pacientes diziam o mesmo no começo, até perceberem que o problema já custava "
            "bem mais do que a consulta.\n\n"
            "Remédio que não resolve, noites mal dormidas, aquele incômodo que nunca passa.\n\n"
            "Às vezes o que parece caro é exatamente o que resolve. "
            "Quer que eu reserve um horário para você amanhã?"
        ),
    ),
    Objection(
        id="think_about_it",
        keywords=(
            "vou pensar", "te aviso depois", "depois eu vejo", "vou decidir",
            "think about it", "let you know", "get back to you",
        ),
        reply=(
            "Claro, sem problema. É normal ficar em dúvida quando o assunto é importante.\n\n"
            "Muitos pacientes quiseram olhar outras opções antes e depois disseram que "
            "gostariam de ter marcado logo.\n\n"
            "Quer que eu reserve um horário? Se decidir diferente, é só me avisar."
        ),
    ),
    Objection(
        id="waiting_exams",
        keywords=(
            "esperando exame", "sair o resultado", "aguardando resultado", "sair o exame",
            "waiting for my exam", "waiting for the results", "waiting for test results",
        ),
        reply=(
            "Entendo. Mas o exame mostra só um pedaço da história, quem resolve é o médico.\n\n"
            "Muita coisa já pode ser avaliada antes do resultado, e isso ajuda a interpretar "
            "o exame depois.\n\n"
            "Consigo um horário ainda esta semana. Vamos dar esse primeiro passo?"
        ),
    ),
)
