"""
Prompt templates for quote extraction and quote comparison.

The domain is Swedish HVAC (VVS) contracting, so prompts are written in
Swedish. Both prompts ask for a single JSON object and nothing else.
"""

import json


EXTRACTION_SCHEMA = {
    "supplier": {
        "name": "",
        "org_number": "",
        "contact_person": "",
        "email": "",
        "phone": "",
    },
    "quote_info": {
        "quote_number": "",
        "date": "",
        "valid_until": "",
        "reference": "",
        "project_name": "",
    },
    "terms": {
        "payment": "",
        "delivery": "",
        "warranty": "",
        "other_conditions": [],
    },
    "items": [
        {
            "position": "",
            "article_number": "",
            "description": "",
            "quantity": 0,
            "unit": "",
            "unit_price": 0,
            "discount_percent": 0,
            "total": 0,
            "type": "product|accessory|service|option",
            "category": "",
            "specifications": {
                "type": "",
                "dimensions": "",
                "color": "",
                "pressure_class": "",
                "other": {},
            },
        }
    ],
    "totals": {
        "subtotal": 0,
        "vat": 0,
        "total": 0,
        "total_incl_vat": 0,
    },
    "included": [],
    "not_included": [],
    "options": [],
    "notes": [],
}


COMPARISON_SCHEMA = {
    "summary": "Kort sammanfattning inkl. varning om olika omfattning",
    "scope_analysis": {
        "categories_found": ["alla produktkategorier som hittades i någon offert"],
        "common_categories": ["kategorier som finns i ALLA offerter"],
        "scope_differences": [
            {"supplier": "", "extra_categories": [], "extra_value": 0, "missing_categories": []}
        ],
        "warning": "Tydlig varning om offerterna har olika omfattning",
    },
    "price_comparison": {
        "ranking": [
            {
                "supplier": "",
                "raw_total": 0,
                "adjusted_total": 0,
                "adjustment_details": "Vad som dragits av för rättvis jämförelse",
                "difference_from_lowest": 0,
                "percent_difference": 0,
            }
        ],
        "price_notes": "Viktiga prisrelaterade observationer",
        "comparison_basis": "Vad adjusted_total omfattar",
    },
    "specification_compliance": {
        "per_supplier": [
            {
                "supplier": "",
                "compliance_score": 0,
                "meets_requirements": [],
                "missing_or_deviating": [],
                "extras_included": [],
            }
        ]
    },
    "detailed_comparison": {
        "products": {"summary": "", "differences": []},
        "accessories": {"summary": "", "differences": []},
        "terms": {
            "payment": {"comparison": ""},
            "delivery": {"comparison": ""},
            "warranty": {"comparison": ""},
        },
    },
    "pros_cons": [{"supplier": "", "pros": [], "cons": []}],
    "recommendation": {
        "recommended_supplier": "",
        "reasoning": "",
        "caveats": [],
        "negotiation_points": [],
    },
    "questions_to_clarify": [{"supplier": "", "question": ""}],
}


def get_extraction_prompt(quote_text: str) -> str:
    return f"""Du är en expert på att analysera VVS-offerter för byggprojekt i Sverige.

Analysera offerten nedan och extrahera uppgifterna i exakt detta JSON-format:
{json.dumps(EXTRACTION_SCHEMA, ensure_ascii=False, indent=2)}

VIKTIGT:
- Extrahera ALLA produktrader/artiklar du hittar, i den ordning de står i offerten.
- "type" är en av: product, accessory, service, option.
- "category" är produktkategorin (t.ex. radiatorer, konvektorer, expansionskärl, shuntar,
  pumpar, ventiler, termostater, montage, frakt). Använd samma kategorinamn för likartade rader.
- Priser ska vara numeriska (utan valutasymboler och utan tusentalsavgränsare).
- Använd ALLTID pris EXKLUSIVE MOMS (ex. moms, netto). Om offerten visar både med och utan
  moms, välj ALLTID priset utan moms.
- "totals.total" ska vara totalsumman EXKLUSIVE MOMS. Står även ett belopp inklusive moms,
  lägg det i "totals.total_incl_vat" och momsbeloppet i "totals.vat".
- Datum ska vara i formatet YYYY-MM-DD.
- Om något saknas, lämna det tomt eller null. Hitta inte på värden.
- Var noggrann med att skilja på vad som ingår och vad som inte ingår.

Offerttext:
{quote_text}

Svara ENDAST med valid JSON, inget annat."""


def get_comparison_prompt(
    project_name: str,
    category_name: str,
    quotes: list,
    scope_hint: dict,
    specification_text: str | None = None,
) -> str:
    spec_block = (
        f"TEKNISK BESKRIVNING/FÖRESKRIFTER:\n{specification_text}\n"
        if specification_text
        else "Ingen teknisk beskrivning bifogad. Lämna specification_compliance.per_supplier tom.\n"
    )
    return f"""Du är en expert VVS-kalkylator som hjälper ett installationsbolag att jämföra offerter.

KONTEXT:
- Projekt: {project_name}
- Kategori: {category_name}
- Antal offerter att jämföra: {len(quotes)}

{spec_block}
OFFERTER:
{json.dumps(quotes, ensure_ascii=False, indent=2, default=str)}

FÖRBERÄKNAD OMFATTNINGSANALYS (baserad på radernas kategorier, använd som utgångspunkt
och korrigera om radbeskrivningarna visar något annat):
{json.dumps(scope_hint, ensure_ascii=False, indent=2)}

KRITISKT - JÄMFÖRELSE AV LIKVÄRDIGT INNEHÅLL:
Innan du jämför priser MÅSTE du:
1. Identifiera ALLA produktkategorier i varje offert.
2. Beräkna ett JUSTERAT JÄMFÖRELSEPRIS som ENDAST inkluderar kategorier som finns i ALLA offerter.
3. Om en offert innehåller extra kategorier som andra saknar, räkna ut deras värde och dra av
   det från totalen.
4. Visa BÅDE råtotal (raw_total) OCH justerat pris (adjusted_total). Råtotalen får aldrig utelämnas.

Exempel: Offert A innehåller radiatorer (800k) + konvektorer (200k) = 1000k och offert B
endast radiatorer (850k). Justerat pris för A är då 800k.

Rangordna price_comparison.ranking stigande efter adjusted_total. difference_from_lowest och
percent_difference räknas mot det lägsta justerade priset. compliance_score är 0-100.

UPPGIFT:
Gör en djupgående jämförelse och returnera JSON i detta format:
{json.dumps(COMPARISON_SCHEMA, ensure_ascii=False, indent=2)}

Var noggrann med att:
1. ALLTID identifiera omfattningsskillnader först.
2. Tydligt flagga när offerter innehåller olika produktkategorier.
3. Notera skillnader i vad som ingår (termostater, konsoler, montage etc.).
4. Flagga om något saknas enligt teknisk beskrivning.
5. Beakta leveransvillkor och garantier.

Svara ENDAST med valid JSON, inget annat."""
